from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import Expense
from money import to_major_units


class ExpenseUpdateIn(BaseModel):
    # fields are left untyped: the ingestion service owns the validation order
    # and the error messages, so coercion must not happen here
    model_config = ConfigDict(extra="ignore")

    amount: Any = None
    category: Any = None
    description: Any = ""
    date: Any = None


class ExpenseIn(ExpenseUpdateIn):
    client_id: Optional[str] = Field(default=None, max_length=64)


class ExpenseOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    amount: float
    amount_paise: int
    category: str
    description: str
    date: str
    created_at: str
    client_id: Optional[str] = None

    @classmethod
    def from_expense(cls, expense: Expense) -> "ExpenseOut":
        return cls(
            id=expense.id,
            amount=float(to_major_units(expense.amount_paise)),
            amount_paise=expense.amount_paise,
            category=expense.category,
            description=expense.description or "",
            date=expense.date.isoformat(),
            created_at=expense.created_at.isoformat(timespec="microseconds") + "Z",
            client_id=expense.client_id,
        )


class ExpensePage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[ExpenseOut]
    total: int
    page: int
    per_page: int
    total_pages: int


class CategorySummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    categories: dict[str, float]
    categories_paise: dict[str, int]
    total: float
    total_paise: int
    count: int
