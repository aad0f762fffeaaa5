from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import NotFound, ValidationError
from models import Expense
from money import to_major_units, to_minor_units
from schemas import CategorySummary, ExpenseIn, ExpenseUpdateIn
from store import ExpenseFilters, ExpenseStore

logger = logging.getLogger(__name__)

DEFAULT_SORT = "date_desc"
MAX_PER_PAGE = 100

SORT_ORDERS = {
    "date_desc": (Expense.date.desc(),),
    "date_asc": (Expense.date.asc(),),
    "amount_desc": (Expense.amount_paise.desc(),),
    "amount_asc": (Expense.amount_paise.asc(),),
    "category_asc": (func.lower(Expense.category).asc(),),
    "category_desc": (func.lower(Expense.category).desc(),),
}
# ties always resolve newest-created first, whatever the primary key
TIE_BREAK = (Expense.created_at.desc(), Expense.id.desc())


@dataclass(frozen=True)
class ValidatedExpense:
    amount_paise: int
    category: str
    description: str
    date: date


@dataclass
class CreateResult:
    expense: Expense
    created: bool


def parse_date(value: object) -> date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("date", "Missing date")
    if not isinstance(value, str):
        raise ValidationError("date", "Invalid date")
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError("date", "Invalid date") from exc


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_expense(data: ExpenseUpdateIn) -> ValidatedExpense:
    """Validate amount, category and date in that order, stopping at the first failure."""
    amount_paise = to_minor_units(data.amount)
    category = _text(data.category)
    if not category:
        raise ValidationError("category", "Missing category")
    expense_date = parse_date(data.date)
    return ValidatedExpense(
        amount_paise=amount_paise,
        category=category,
        description=_text(data.description),
        date=expense_date,
    )


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = ExpenseStore(session)

    def get(self, expense_id: str) -> Expense:
        expense = self.store.get(expense_id)
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> CreateResult:
        valid = validate_expense(data)
        client_id = (data.client_id or "").strip() or None
        expense = Expense(
            id=str(uuid.uuid4()),
            amount_paise=valid.amount_paise,
            category=valid.category,
            description=valid.description,
            date=valid.date,
            client_id=client_id,
            created_at=self.store.next_created_at(),
        )
        stored, created = self.store.insert_or_get(expense)
        if created:
            logger.info(
                f"expense_created: id={stored.id} amount_paise={stored.amount_paise} "
                f"category={stored.category} client_id={client_id}"
            )
        else:
            logger.info(f"expense_exists: id={stored.id} client_id={client_id}")
        return CreateResult(expense=stored, created=created)

    def update(self, expense_id: str, data: ExpenseUpdateIn) -> Expense:
        valid = validate_expense(data)
        expense = self.store.update(
            expense_id,
            amount_paise=valid.amount_paise,
            category=valid.category,
            description=valid.description,
            date=valid.date,
        )
        if expense is None:
            raise NotFound("Expense not found")
        logger.info(
            f"expense_updated: id={expense.id} amount_paise={expense.amount_paise}"
        )
        return expense

    def delete(self, expense_id: str) -> None:
        if not self.store.delete(expense_id):
            raise NotFound("Expense not found")
        logger.info(f"expense_deleted: id={expense_id}")


@dataclass
class ExpenseQuery:
    category: Optional[str] = None
    sort: str = DEFAULT_SORT
    page: int = 1
    per_page: Optional[int] = None

    @classmethod
    def from_params(
        cls,
        category: Optional[str] = None,
        sort: Optional[str] = None,
        page: Optional[str] = None,
        per_page: Optional[str] = None,
    ) -> "ExpenseQuery":
        page_value = _parse_int(page, "page")
        per_page_value = _parse_int(per_page, "per_page")
        return cls(
            category=category or None,
            sort=sort if sort in SORT_ORDERS else DEFAULT_SORT,
            page=max(page_value or 1, 1),
            per_page=(
                None
                if per_page_value is None
                else min(max(per_page_value, 1), MAX_PER_PAGE)
            ),
        )


def _parse_int(value: Optional[str], field: str) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ValidationError(field, f"Invalid {field}") from exc


@dataclass
class ExpensePageResult:
    items: list[Expense]
    total: int
    page: int
    per_page: int
    total_pages: int


def running_total(expenses: Iterable) -> int:
    """Sum of minor units over the records currently on display."""
    return sum(int(e.amount_paise) for e in expenses)


class ExpenseQueryService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = ExpenseStore(session)

    def list(self, query: ExpenseQuery) -> Union[list[Expense], ExpensePageResult]:
        filters = ExpenseFilters(category=query.category)
        order_by = SORT_ORDERS.get(query.sort, SORT_ORDERS[DEFAULT_SORT]) + TIE_BREAK
        if query.per_page is None:
            return self.store.scan(filters, order_by)

        per_page = min(max(query.per_page, 1), MAX_PER_PAGE)
        page = max(query.page, 1)
        total = self.store.count(filters)
        items = self.store.scan(
            filters, order_by, offset=(page - 1) * per_page, limit=per_page
        )
        return ExpensePageResult(
            items=items,
            total=total,
            page=page,
            per_page=per_page,
            total_pages=max(1, math.ceil(total / per_page)),
        )

    def summary(self, category: Optional[str] = None) -> CategorySummary:
        filters = ExpenseFilters(category=category or None)
        totals = self.store.category_totals(filters)
        total_paise = sum(amount for _, amount in totals)
        return CategorySummary(
            categories={
                name: float(to_major_units(amount)) for name, amount in totals
            },
            categories_paise=dict(totals),
            total=float(to_major_units(total_paise)),
            total_paise=total_paise,
            count=self.store.count(filters),
        )

    def categories(self) -> list[str]:
        return self.store.categories()
