"""Client-side queue of not-yet-confirmed expense submissions.

A submission is written to durable local storage before the network call and
removed only once the server acknowledges it. Replays reuse the same
``client_id`` so the server collapses duplicates into one record.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from api_client import ExpenseApi, encode_body
from errors import InternalError, NotFound, TransientNetworkFailure, ValidationError
from schemas import ExpenseOut

logger = logging.getLogger(__name__)

PENDING_KEY = "expense_pending_v1"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class FileStore:
    """One file per key under ``directory``, replaced atomically on write."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            handle.write(value)
            handle.flush()
        temp_path.replace(path)


@dataclass
class PendingSubmission:
    client_id: str
    body: dict


class SubmitStatus(str, Enum):
    saved = "saved"
    existing = "existing"
    queued = "queued"
    rejected = "rejected"


@dataclass
class SubmitResult:
    status: SubmitStatus
    client_id: str
    expense: Optional[ExpenseOut] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (SubmitStatus.saved, SubmitStatus.existing)


@dataclass
class FlushResult:
    sent: list[ExpenseOut] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


class WriteQueue:
    def __init__(
        self,
        api: ExpenseApi,
        store: KeyValueStore,
        *,
        key: str = PENDING_KEY,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.api = api
        self.store = store
        self.key = key
        self.id_factory = id_factory

    def pending(self) -> list[PendingSubmission]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"pending_queue_unreadable: key={self.key}")
            return []
        if not isinstance(entries, list):
            logger.warning(f"pending_queue_unreadable: key={self.key}")
            return []
        return [
            PendingSubmission(client_id=str(e["client_id"]), body=dict(e["body"]))
            for e in entries
            if isinstance(e, dict) and "client_id" in e and "body" in e
        ]

    def _save(self, entries: list[PendingSubmission]) -> None:
        payload = [{"client_id": e.client_id, "body": e.body} for e in entries]
        self.store.set(self.key, encode_body(payload).decode("utf-8"))

    def _append(self, entry: PendingSubmission) -> None:
        entries = self.pending()
        entries.append(entry)
        self._save(entries)

    def _remove(self, client_id: str) -> None:
        # re-read so entries added since the send started survive
        self._save([e for e in self.pending() if e.client_id != client_id])

    def _send(self, entry: PendingSubmission) -> SubmitResult:
        try:
            result = self.api.create(entry.body)
        except ValidationError as exc:
            self._remove(entry.client_id)
            return SubmitResult(SubmitStatus.rejected, entry.client_id, error=str(exc))
        except (TransientNetworkFailure, InternalError, NotFound) as exc:
            logger.warning(f"pending_send_failed: client_id={entry.client_id} error={exc}")
            return SubmitResult(SubmitStatus.queued, entry.client_id, error=str(exc))
        except Exception as exc:
            # one bad replay must not stop the rest of the flush
            logger.exception(f"pending_send_crashed: client_id={entry.client_id}")
            return SubmitResult(SubmitStatus.queued, entry.client_id, error=str(exc))
        self._remove(entry.client_id)
        status = SubmitStatus.saved if result.created else SubmitStatus.existing
        return SubmitResult(status, entry.client_id, expense=result.expense)

    def submit(self, body: dict) -> SubmitResult:
        client_id = self.id_factory()
        payload = dict(body)
        payload["client_id"] = client_id
        entry = PendingSubmission(client_id=client_id, body=payload)
        self._append(entry)
        return self._send(entry)

    def flush(self) -> FlushResult:
        result = FlushResult()
        for entry in self.pending():
            outcome = self._send(entry)
            if outcome.ok:
                result.sent.append(outcome.expense)
            elif outcome.status == SubmitStatus.rejected:
                result.dropped.append(entry.client_id)
            else:
                result.failed.append(entry.client_id)
        if result.sent or result.failed or result.dropped:
            logger.info(
                f"pending_flush: sent={len(result.sent)} failed={len(result.failed)} "
                f"dropped={len(result.dropped)}"
            )
        return result
