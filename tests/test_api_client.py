from urllib.error import URLError

import pytest

import api_client
from api_client import ExpenseApi, urllib_transport
from errors import InternalError, NotFound, TransientNetworkFailure, ValidationError


def _stub(status, body):
    calls = []

    def send(method, url, payload):
        calls.append((method, url, payload))
        return status, body

    return send, calls


def test_error_statuses_map_to_taxonomy() -> None:
    send, _ = _stub(400, {"error": "Missing date"})
    with pytest.raises(ValidationError, match="Missing date"):
        ExpenseApi("http://x", transport=send).create({"amount": 1})

    send, _ = _stub(404, {"error": "Not found"})
    with pytest.raises(NotFound):
        ExpenseApi("http://x", transport=send).delete("abc")

    send, _ = _stub(500, {"error": "Internal error"})
    with pytest.raises(InternalError):
        ExpenseApi("http://x", transport=send).categories()

    send, _ = _stub(502, None)
    with pytest.raises(InternalError, match="502"):
        ExpenseApi("http://x", transport=send).categories()


def test_unreadable_success_body_is_an_internal_error() -> None:
    send, _ = _stub(200, None)
    with pytest.raises(InternalError, match="Unreadable"):
        ExpenseApi("http://x", transport=send).create({"amount": 1})

    send, _ = _stub(200, "<html>login</html>")
    with pytest.raises(InternalError, match="Unreadable"):
        ExpenseApi("http://x", transport=send).categories()


def test_list_builds_query_string_and_skips_empty_params() -> None:
    send, calls = _stub(200, [])
    api = ExpenseApi("http://x/", transport=send)

    assert api.list(category="food & drink", sort="amount_desc") == []
    assert calls[0][1] == "http://x/expenses?category=food+%26+drink&sort=amount_desc"

    api.list(category="")
    assert calls[1][1] == "http://x/expenses"


def test_create_reports_whether_record_is_new(api) -> None:
    body = {"amount": 3, "category": "food", "date": "2024-01-01", "client_id": "z"}

    first = api.create(body)
    second = api.create(body)

    assert first.created
    assert not second.created
    assert first.expense.id == second.expense.id
    assert first.expense.amount_paise == 300


def test_urllib_transport_turns_unreachable_server_into_transient_failure(
    monkeypatch,
) -> None:
    def refuse(req, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(api_client, "urlopen", refuse)
    send = urllib_transport(timeout=1)

    with pytest.raises(TransientNetworkFailure):
        send("GET", "http://localhost:9/expenses", None)
