from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from pydantic import ValidationError as SchemaError

from config import get_settings
from errors import InternalError, NotFound, TransientNetworkFailure, ValidationError
from schemas import CategorySummary, ExpenseOut, ExpensePage

logger = logging.getLogger(__name__)

# (method, url, payload) -> (status, decoded json or None)
Transport = Callable[[str, str, Optional[dict]], tuple[int, Any]]


def _json_default(value: object) -> str:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_body(payload: object) -> bytes:
    return json.dumps(payload, default=_json_default).encode("utf-8")


def _decode(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


def urllib_transport(timeout: Optional[float] = None) -> Transport:
    if timeout is None:
        timeout = get_settings().api_timeout_secs

    def send(method: str, url: str, payload: Optional[dict]) -> tuple[int, Any]:
        data = encode_body(payload) if payload is not None else None
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        req = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(req, timeout=timeout) as resp:
                return resp.status, _decode(resp.read())
        except HTTPError as exc:
            # error statuses still carry a JSON body
            return exc.code, _decode(exc.read())
        except (URLError, TimeoutError, ConnectionError) as exc:
            raise TransientNetworkFailure(f"Could not reach {url}") from exc

    return send


def _parse(model, data):
    try:
        return model.model_validate(data)
    except SchemaError as exc:
        logger.warning(f"unreadable_response: model={model.__name__}")
        raise InternalError("Unreadable response from server") from exc


@dataclass
class CreateResult:
    expense: ExpenseOut
    created: bool


class ExpenseApi:
    """Client for the expenses HTTP interface."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        self.base_url = (base_url or get_settings().api_base_url).rstrip("/")
        self.transport = transport or urllib_transport(timeout)

    def _url(self, path: str, params: Optional[dict] = None) -> str:
        url = f"{self.base_url}{path}"
        if params:
            query = {k: v for k, v in params.items() if v not in (None, "")}
            if query:
                url = f"{url}?{urlencode(query)}"
        return url

    def _request(
        self, method: str, path: str, payload: Optional[dict] = None, params=None
    ) -> tuple[int, Any]:
        status, body = self.transport(method, self._url(path, params), payload)
        if 200 <= status < 300:
            return status, body
        message = body.get("error") if isinstance(body, dict) else None
        if status == 400:
            raise ValidationError("request", message or "Invalid request")
        if status == 404:
            raise NotFound(message or "Not found")
        raise InternalError(message or f"Server error ({status})")

    def create(self, body: dict) -> CreateResult:
        status, data = self._request("POST", "/expenses", body)
        return CreateResult(expense=_parse(ExpenseOut, data), created=status == 201)

    def list(
        self,
        category: Optional[str] = None,
        sort: Optional[str] = None,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> Union[list[ExpenseOut], ExpensePage]:
        params = {"category": category, "sort": sort, "page": page, "per_page": per_page}
        _, data = self._request("GET", "/expenses", params=params)
        if isinstance(data, list):
            return [_parse(ExpenseOut, item) for item in data]
        return _parse(ExpensePage, data)

    def get(self, expense_id: str) -> ExpenseOut:
        _, data = self._request("GET", f"/expenses/{quote(expense_id, safe='')}")
        return _parse(ExpenseOut, data)

    def update(self, expense_id: str, body: dict) -> ExpenseOut:
        _, data = self._request("PUT", f"/expenses/{quote(expense_id, safe='')}", body)
        return _parse(ExpenseOut, data)

    def delete(self, expense_id: str) -> None:
        self._request("DELETE", f"/expenses/{quote(expense_id, safe='')}")

    def summary(self, category: Optional[str] = None) -> CategorySummary:
        _, data = self._request("GET", "/expenses/summary", params={"category": category})
        return _parse(CategorySummary, data)

    def categories(self) -> list[str]:
        _, data = self._request("GET", "/expenses/categories")
        if not isinstance(data, list):
            raise InternalError("Unreadable response from server")
        return [str(name) for name in data]
