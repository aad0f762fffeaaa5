from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import NotFound, ValidationError
from schemas import ExpenseIn, ExpenseUpdateIn
from services import ExpenseService
from store import ExpenseStore


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def test_create_stores_minor_units_and_stamps_record() -> None:
    with Session(_engine()) as session:
        result = ExpenseService(session).create(
            ExpenseIn(amount=150.50, category="food", date="2024-01-15")
        )
        expense = result.expense
        assert result.created
        assert expense.amount_paise == 15050
        assert expense.category == "food"
        assert expense.description == ""
        assert expense.date == date(2024, 1, 15)
        assert expense.client_id is None
        assert expense.id and expense.created_at is not None


def test_create_with_same_client_id_returns_existing_record() -> None:
    with Session(_engine()) as session:
        service = ExpenseService(session)
        payload = ExpenseIn(
            amount="12.00", category="travel", date="2024-02-01", client_id="abc-1"
        )
        first = service.create(payload)
        second = service.create(payload)

        assert first.created
        assert not second.created
        assert second.expense.id == first.expense.id
        assert ExpenseStore(session).count() == 1


def test_create_resolves_concurrent_duplicate_to_existing(monkeypatch) -> None:
    with Session(_engine()) as session:
        payload = ExpenseIn(amount=5, category="food", date="2024-01-01", client_id="k")
        first = ExpenseService(session).create(payload)

        original = ExpenseStore.get_by_client_id
        lookups: list[str] = []

        def racing_lookup(self, client_id):
            # the first check misses, as if the other insert had not landed yet
            lookups.append(client_id)
            if len(lookups) == 1:
                return None
            return original(self, client_id)

        monkeypatch.setattr(ExpenseStore, "get_by_client_id", racing_lookup)
        second = ExpenseService(session).create(payload)

        assert len(lookups) == 2
        assert not second.created
        assert second.expense.id == first.expense.id
        assert ExpenseStore(session).count() == 1


@pytest.mark.parametrize(
    "payload, field, reason",
    [
        ({"category": "food", "date": "2024-01-01"}, "amount", "Invalid amount"),
        ({"amount": "x", "category": "", "date": ""}, "amount", "Invalid amount"),
        (
            {"amount": 0, "category": "", "date": ""},
            "amount",
            "Amount must be greater than 0",
        ),
        ({"amount": 3, "category": "  ", "date": ""}, "category", "Missing category"),
        ({"amount": 3, "category": "food"}, "date", "Missing date"),
        (
            {"amount": 3, "category": "food", "date": "2024-02-30"},
            "date",
            "Invalid date",
        ),
        (
            {"amount": 3, "category": "food", "date": "15/01/2024"},
            "date",
            "Invalid date",
        ),
        ({"amount": "x", "category": 5, "date": 20240101}, "amount", "Invalid amount"),
        ({"amount": 3, "category": 5, "date": "2024-01-01"}, "category", "Missing category"),
        ({"amount": 3, "category": "food", "date": 20240101}, "date", "Invalid date"),
    ],
)
def test_validation_stops_at_first_failure(payload, field, reason) -> None:
    with Session(_engine()) as session:
        with pytest.raises(ValidationError) as exc_info:
            ExpenseService(session).create(ExpenseIn(**payload))
        assert exc_info.value.field == field
        assert exc_info.value.reason == reason
        assert ExpenseStore(session).count() == 0


def test_update_overwrites_fields_but_keeps_identity() -> None:
    with Session(_engine()) as session:
        service = ExpenseService(session)
        created = service.create(
            ExpenseIn(
                amount=10,
                category="food",
                description="lunch",
                date="2024-01-01",
                client_id="c-1",
            )
        ).expense
        created_at = created.created_at

        updated = service.update(
            created.id,
            ExpenseUpdateIn(
                amount=200, category="rent", description="June", date="2024-06-01"
            ),
        )

        assert updated.id == created.id
        assert updated.amount_paise == 20000
        assert updated.category == "rent"
        assert updated.description == "June"
        assert updated.date == date(2024, 6, 1)
        assert updated.created_at == created_at
        assert updated.client_id == "c-1"


def test_update_unknown_id_is_not_found_and_creates_nothing() -> None:
    with Session(_engine()) as session:
        with pytest.raises(NotFound):
            ExpenseService(session).update(
                "missing",
                ExpenseUpdateIn(amount=1, category="food", date="2024-01-01"),
            )
        assert ExpenseStore(session).count() == 0


def test_update_validates_before_touching_storage() -> None:
    with Session(_engine()) as session:
        service = ExpenseService(session)
        created = service.create(
            ExpenseIn(amount=10, category="food", date="2024-01-01")
        ).expense
        with pytest.raises(ValidationError):
            service.update(
                created.id, ExpenseUpdateIn(amount=-1, category="x", date="2024-01-01")
            )
        assert service.get(created.id).amount_paise == 1000


def test_delete_removes_row_and_unknown_id_leaves_table_unchanged() -> None:
    with Session(_engine()) as session:
        service = ExpenseService(session)
        store = ExpenseStore(session)
        keep = service.create(ExpenseIn(amount=1, category="a", date="2024-01-01"))
        drop = service.create(ExpenseIn(amount=2, category="b", date="2024-01-02"))

        service.delete(drop.expense.id)
        assert store.count() == 1
        with pytest.raises(NotFound):
            service.get(drop.expense.id)

        with pytest.raises(NotFound):
            service.delete(drop.expense.id)
        assert store.count() == 1
        assert service.get(keep.expense.id).category == "a"


def test_created_at_is_strictly_increasing() -> None:
    with Session(_engine()) as session:
        service = ExpenseService(session)
        stamps = [
            service.create(
                ExpenseIn(amount=1, category="a", date="2024-01-01")
            ).expense.created_at
            for _ in range(20)
        ]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
