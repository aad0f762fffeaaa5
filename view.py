from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from api_client import ExpenseApi
from errors import (
    InternalError,
    InvalidAmount,
    NotFound,
    TransientNetworkFailure,
    ValidationError,
)
from money import format_money, to_major_units, to_minor_units
from schemas import CategorySummary, ExpenseOut, ExpensePage
from services import DEFAULT_SORT, SORT_ORDERS, running_total
from write_queue import SubmitResult, SubmitStatus, WriteQueue

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

SORT_LABELS = {
    "date_desc": "Newest first",
    "date_asc": "Oldest first",
    "amount_desc": "Amount: high to low",
    "amount_asc": "Amount: low to high",
    "category_asc": "Category A-Z",
    "category_desc": "Category Z-A",
}

_env: Optional[Environment] = None


def _environment() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )
        _env.filters["money"] = format_money
    return _env


@dataclass(frozen=True)
class LoadTicket:
    seq: int
    category: Optional[str]
    sort: str
    page: int


@dataclass
class ExpenseForm:
    amount: str = ""
    category: str = ""
    description: str = ""
    date: str = ""
    id: Optional[str] = None


class ExpenseView:
    """State behind the expenses screen.

    List loads may overlap; each one takes a ticket from ``begin_load`` and
    only the most recently issued ticket is allowed to change what is shown.
    """

    def __init__(
        self,
        api: ExpenseApi,
        queue: WriteQueue,
        *,
        per_page: int = 10,
        summary_limit: int = 5,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.api = api
        self.queue = queue
        self.per_page = per_page
        self.summary_limit = summary_limit
        self.today = today

        self.category: Optional[str] = None
        self.sort = DEFAULT_SORT
        self.page = 1

        self.items: list[ExpenseOut] = []
        self.total = 0
        self.total_pages = 1
        self.categories: list[str] = []
        self.running_total_paise = 0
        self.summary: dict[str, int] = {}
        self.summary_top: list[tuple[str, int]] = []
        self.summary_overflow: list[tuple[str, int]] = []

        self.loading = False
        self.error: Optional[str] = None
        self.status: Optional[str] = None

        self.form = self.new_form()
        self.editing: Optional[ExpenseForm] = None
        self.pending_delete: Optional[str] = None

        self._seq = 0

    # loading

    def begin_load(self) -> LoadTicket:
        self._seq += 1
        self.loading = True
        return LoadTicket(self._seq, self.category, self.sort, self.page)

    def is_current(self, ticket: LoadTicket) -> bool:
        return ticket.seq == self._seq

    def complete_load(
        self,
        ticket: LoadTicket,
        page: ExpensePage,
        summary: CategorySummary,
        categories: list[str],
    ) -> bool:
        if not self.is_current(ticket):
            logger.debug(f"stale_load_ignored: seq={ticket.seq} latest={self._seq}")
            return False
        self.loading = False
        self.error = None
        self.items = list(page.items)
        self.total = page.total
        self.page = page.page
        self.total_pages = page.total_pages
        self.running_total_paise = running_total(self.items)

        options = set(categories)
        if self.category:
            options.add(self.category)
        self.categories = sorted(options)

        self.summary = dict(summary.categories_paise)
        ranked = sorted(self.summary.items(), key=lambda kv: (-kv[1], kv[0]))
        self.summary_top = ranked[: self.summary_limit]
        self.summary_overflow = sorted(ranked[self.summary_limit :])
        return True

    def fail_load(self, ticket: LoadTicket, error: Exception) -> bool:
        if not self.is_current(ticket):
            return False
        self.loading = False
        self.error = f"Failed to load expenses. {error}".strip()
        return True

    def refresh(self) -> bool:
        ticket = self.begin_load()
        try:
            page = self.api.list(
                category=ticket.category,
                sort=ticket.sort,
                page=ticket.page,
                per_page=self.per_page,
            )
            summary = self.api.summary(ticket.category)
            categories = self.api.categories()
        except (TransientNetworkFailure, InternalError, ValidationError) as exc:
            return self.fail_load(ticket, exc)
        if self.is_current(ticket) and not page.items and page.page > page.total_pages:
            # the page emptied under us, e.g. after deleting its last row
            self.page = page.total_pages
            return self.refresh()
        return self.complete_load(ticket, page, summary, categories)

    def start(self) -> bool:
        pending = self.queue.pending()
        if pending:
            self.status = f"Resending {len(pending)} pending..."
            self.queue.flush()
            self.status = None
        return self.refresh()

    # filtering and paging

    def set_filter(self, category: Optional[str]) -> bool:
        self.category = category or None
        self.page = 1
        return self.refresh()

    def set_sort(self, sort: str) -> bool:
        self.sort = sort if sort in SORT_ORDERS else DEFAULT_SORT
        self.page = 1
        return self.refresh()

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    def next_page(self) -> bool:
        if not self.has_next:
            return False
        self.page += 1
        return self.refresh()

    def previous_page(self) -> bool:
        if not self.has_previous:
            return False
        self.page -= 1
        return self.refresh()

    # creating

    def new_form(self) -> ExpenseForm:
        return ExpenseForm(date=self.today().isoformat())

    def _check_form(self, form: ExpenseForm) -> Optional[str]:
        if not form.date.strip():
            return "Date is required"
        if not form.category.strip():
            return "Category is required"
        try:
            to_minor_units(form.amount)
        except InvalidAmount as exc:
            return exc.reason
        return None

    @staticmethod
    def _body(form: ExpenseForm) -> dict:
        return {
            "amount": float(to_major_units(to_minor_units(form.amount))),
            "category": form.category.strip(),
            "description": form.description.strip(),
            "date": form.date.strip(),
        }

    def submit(self, form: ExpenseForm) -> Optional[SubmitResult]:
        self.error = None
        problem = self._check_form(form)
        if problem:
            self.error = problem
            return None

        result = self.queue.submit(self._body(form))
        if result.ok:
            self.status = "Saved."
            self.form = self.new_form()
            self.refresh()
        elif result.status == SubmitStatus.queued:
            self.error = f"Failed to save; will retry automatically. {result.error}"
        else:
            self.error = result.error
        return result

    def reset_form(self) -> None:
        self.form = self.new_form()
        self.error = None
        self.status = None

    # editing

    def begin_edit(self, expense_id: str) -> Optional[ExpenseForm]:
        # always fetch the live record; the table may be stale
        try:
            live = self.api.get(expense_id)
        except NotFound:
            self.refresh()
            self.error = "This expense no longer exists."
            return None
        except (TransientNetworkFailure, InternalError) as exc:
            self.error = f"Could not load the expense. Please retry. {exc}"
            return None
        self.editing = ExpenseForm(
            id=live.id,
            amount=f"{to_major_units(live.amount_paise):.2f}",
            category=live.category,
            description=live.description,
            date=live.date,
        )
        return self.editing

    def save_edit(self, form: ExpenseForm) -> Optional[ExpenseOut]:
        if self.editing is None or form.id != self.editing.id:
            return None
        self.error = None
        problem = self._check_form(form)
        if problem:
            self.error = problem
            return None
        try:
            updated = self.api.update(form.id, self._body(form))
        except ValidationError as exc:
            self.error = str(exc)
            return None
        except NotFound:
            self.editing = None
            self.refresh()
            self.error = "This expense no longer exists."
            return None
        except (TransientNetworkFailure, InternalError):
            self.editing = form
            self.error = "Failed to save changes. Please retry."
            return None
        self.editing = None
        self.status = "Saved."
        self.refresh()
        return updated

    def cancel_edit(self) -> None:
        self.editing = None

    # deleting

    def request_delete(self, expense_id: str) -> None:
        self.pending_delete = expense_id

    def cancel_delete(self) -> None:
        self.pending_delete = None

    def confirm_delete(self) -> bool:
        expense_id = self.pending_delete
        if expense_id is None:
            return False
        self.pending_delete = None
        try:
            self.api.delete(expense_id)
        except NotFound:
            self.refresh()
            self.error = "This expense was already deleted."
            return False
        except (TransientNetworkFailure, InternalError):
            self.error = "Failed to delete. Please retry."
            return False
        self.status = "Deleted."
        self.refresh()
        return True

    # rendering

    def render(self) -> str:
        template = _environment().get_template("expenses.html")
        return template.render(view=self, sort_labels=SORT_LABELS)
