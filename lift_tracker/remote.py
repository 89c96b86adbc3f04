"""Remote document store adapter.

The core only needs document CRUD keyed by slash-separated paths such as
``users/{userId}/weightRecords/{recordId}``. Implementations are constructed
explicitly at bootstrap and passed to whoever needs them.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import json
import logging
from datetime import date
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .constants import (
    TRAINING_RECORDS_COLLECTION,
    TRAININGS_COLLECTION,
    USERS_COLLECTION,
    WEIGHT_RECORDS_COLLECTION,
)

LOGGER = logging.getLogger(__name__)

Document = Dict[str, Any]


class RemoteStoreError(Exception):
    """Base class for failures reported by a remote store adapter."""


class DocumentNotFoundError(RemoteStoreError):
    """Raised by `update` when the target document does not exist."""


class RemoteUnavailableError(RemoteStoreError):
    """Raised when the remote store cannot be reached."""


def _join(*segments: str) -> str:
    cleaned = [str(segment).strip("/") for segment in segments]
    if any(not segment for segment in cleaned):
        raise ValueError(f"Path segments must be non-empty: {segments!r}")
    return "/".join(cleaned)


def user_path(user_id: str) -> str:
    return _join(USERS_COLLECTION, user_id)


def weight_records_collection(user_id: str) -> str:
    return _join(user_path(user_id), WEIGHT_RECORDS_COLLECTION)


def weight_record_path(user_id: str, record_id: str) -> str:
    return _join(weight_records_collection(user_id), record_id)


def trainings_collection(user_id: str) -> str:
    return _join(user_path(user_id), TRAININGS_COLLECTION)


def training_day_path(user_id: str, day: date | str) -> str:
    key = day.isoformat() if isinstance(day, date) else str(day)
    return _join(trainings_collection(user_id), key)


def training_records_collection(user_id: str, day: date | str) -> str:
    return _join(training_day_path(user_id, day), TRAINING_RECORDS_COLLECTION)


def training_record_path(user_id: str, day: date | str, record_id: str) -> str:
    return _join(training_records_collection(user_id, day), record_id)


def _split_document_path(path: str) -> Tuple[str, str]:
    segments = path.strip("/").split("/")
    if len(segments) < 2 or len(segments) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


class RemoteStore(abc.ABC):
    """Document-oriented CRUD by path. Every call is a suspension point."""

    @abc.abstractmethod
    async def get(self, path: str) -> Optional[Document]:
        """Return the document at `path`, or None when it does not exist."""

    @abc.abstractmethod
    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        """Create or fully overwrite the document at `path`."""

    @abc.abstractmethod
    async def update(self, path: str, data: Mapping[str, Any]) -> None:
        """Merge `data` into an existing document; raises `DocumentNotFoundError` if absent."""

    @abc.abstractmethod
    async def delete(self, path: str) -> None:
        """Delete the document at `path`; deleting a missing document succeeds."""

    @abc.abstractmethod
    async def list_documents(self, collection_path: str) -> List[Tuple[str, Document]]:
        """Return `(document_id, data)` pairs directly inside `collection_path`."""


class InMemoryRemoteStore(RemoteStore):
    """
    Dictionary-backed remote store.

    Useful as a test double and as the base for the file-backed store: it
    records every call, can be switched offline, and can be told to fail
    specific `(method, path)` pairs.
    """

    def __init__(self, documents: Optional[Mapping[str, Mapping[str, Any]]] = None, *, latency: float = 0.0) -> None:
        self.documents: Dict[str, Document] = {path: dict(doc) for path, doc in (documents or {}).items()}
        self.latency = latency
        self.online = True
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}

    def fail(self, method: str, path: str, error: Exception | None = None) -> None:
        self.failures[(method, path)] = error or RemoteUnavailableError(f"{method} {path} failed")

    async def _enter(self, method: str, path: str) -> None:
        self.calls.append((method, path))
        await asyncio.sleep(self.latency)
        if not self.online:
            raise RemoteUnavailableError("Remote store is offline.")
        error = self.failures.get((method, path))
        if error is not None:
            raise error

    def _commit(self) -> None:
        """Hook for subclasses that persist the document map."""

    async def get(self, path: str) -> Optional[Document]:
        await self._enter("get", path)
        doc = self.documents.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        _split_document_path(path)
        await self._enter("set", path)
        self.documents[path] = copy.deepcopy(dict(data))
        self._commit()

    async def update(self, path: str, data: Mapping[str, Any]) -> None:
        await self._enter("update", path)
        existing = self.documents.get(path)
        if existing is None:
            raise DocumentNotFoundError(f"No document at {path}")
        existing.update(copy.deepcopy(dict(data)))
        self._commit()

    async def delete(self, path: str) -> None:
        await self._enter("delete", path)
        if self.documents.pop(path, None) is not None:
            self._commit()

    async def list_documents(self, collection_path: str) -> List[Tuple[str, Document]]:
        await self._enter("list", collection_path)
        prefix = collection_path.strip("/") + "/"
        results: List[Tuple[str, Document]] = []
        for path in sorted(self.documents):
            if not path.startswith(prefix):
                continue
            remainder = path[len(prefix):]
            if "/" in remainder:
                continue
            results.append((remainder, copy.deepcopy(self.documents[path])))
        return results


class JsonFileRemoteStore(InMemoryRemoteStore):
    """Remote store persisted to one JSON file, standing in for the cloud database locally."""

    def __init__(self, path: Path | str, *, latency: float = 0.0) -> None:
        self.path = Path(path).expanduser()
        super().__init__(self._load(self.path), latency=latency)

    @staticmethod
    def _load(path: Path) -> Dict[str, Document]:
        if not path.exists():
            return {}
        raw = path.read_text(encoding="utf-8").strip() or "{}"
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Could not parse {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"{path} must contain a JSON object")
        return {str(key): dict(value) for key, value in payload.items() if isinstance(value, dict)}

    def _commit(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.documents, indent=2, sort_keys=True) + "\n"
        with NamedTemporaryFile("w", dir=self.path.parent, delete=False, encoding="utf-8") as tmp:
            tmp.write(payload)
            temp_path = Path(tmp.name)
        temp_path.replace(self.path)
        LOGGER.debug("Remote store saved %s documents to %s", len(self.documents), self.path)
