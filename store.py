from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import ColumnElement, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Expense, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ExpenseFilters:
    category: Optional[str] = None


class ExpenseStore:
    """Storage interface over the ``expenses`` table.

    Every mutating call commits its own transaction. Lookups return ``None``
    instead of raising so callers decide what a miss means.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _apply_filters(self, stmt, filters: Optional[ExpenseFilters]):
        if filters and filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        return stmt

    def get(self, expense_id: str) -> Optional[Expense]:
        return self.session.get(Expense, expense_id)

    def get_by_client_id(self, client_id: str) -> Optional[Expense]:
        return self.session.scalar(select(Expense).where(Expense.client_id == client_id))

    def next_created_at(self) -> datetime:
        now = utcnow()
        latest = self.session.scalar(select(func.max(Expense.created_at)))
        if latest is not None and now <= latest:
            return latest + timedelta(microseconds=1)
        return now

    def insert_or_get(self, expense: Expense) -> tuple[Expense, bool]:
        """Insert ``expense`` unless its client_id is already stored.

        Returns the stored row and whether it was newly created. A concurrent
        insert carrying the same client_id trips the unique constraint; that
        case resolves to the row that won.
        """
        if expense.client_id:
            existing = self.get_by_client_id(expense.client_id)
            if existing:
                return existing, False

        self.session.add(expense)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            if not expense.client_id:
                raise
            existing = self.get_by_client_id(expense.client_id)
            if existing is None:
                raise
            logger.warning(
                f"idempotency_race_resolved: client_id={expense.client_id} "
                f"id={existing.id}"
            )
            return existing, False
        self.session.refresh(expense)
        return expense, True

    def scan(
        self,
        filters: Optional[ExpenseFilters],
        order_by: Sequence[ColumnElement],
        *,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        stmt = self._apply_filters(select(Expense), filters).order_by(*order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def count(self, filters: Optional[ExpenseFilters] = None) -> int:
        stmt = self._apply_filters(select(func.count(Expense.id)), filters)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def category_totals(
        self, filters: Optional[ExpenseFilters] = None
    ) -> list[tuple[str, int]]:
        stmt = (
            select(Expense.category, func.sum(Expense.amount_paise).label("total"))
            .group_by(Expense.category)
            .order_by(Expense.category)
        )
        stmt = self._apply_filters(stmt, filters)
        return [
            (row.category, int(row.total or 0)) for row in self.session.execute(stmt)
        ]

    def categories(self) -> list[str]:
        stmt = select(Expense.category).distinct().order_by(Expense.category)
        return list(self.session.scalars(stmt).all())

    def update(self, expense_id: str, **values: object) -> Optional[Expense]:
        values["updated_at"] = utcnow()
        result = self.session.execute(
            update(Expense)
            .where(Expense.id == expense_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            return None
        self.session.commit()
        expense = self.session.get(Expense, expense_id, populate_existing=True)
        return expense

    def delete(self, expense_id: str) -> bool:
        result = self.session.execute(delete(Expense).where(Expense.id == expense_id))
        if result.rowcount == 0:
            self.session.rollback()
            return False
        self.session.commit()
        return True
