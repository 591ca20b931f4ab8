"""Per-user JSON document persistence.

``DocumentStore`` is the collaborator the engine talks to. The SQLAlchemy
implementation keeps one row per user and serialises appends with an
optimistic version check.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from db.models import UserDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")
Mutator = Callable[[dict[str, Any]], T]


class UserDocumentNotFound(LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User document not found: {user_id}")
        self.user_id = user_id


class PersistenceError(RuntimeError):
    pass


class DocumentStore(Protocol):
    async def get(self, user_id: str) -> dict[str, Any]:
        ...

    async def put(self, user_id: str, document: dict[str, Any]) -> None:
        ...

    async def update(self, user_id: str, mutate: Mutator) -> Any:
        ...


class InMemoryDocumentStore:
    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self._lock = threading.Lock()

    async def get(self, user_id: str) -> dict[str, Any]:
        with self._lock:
            if user_id not in self._documents:
                raise UserDocumentNotFound(user_id)
            return copy.deepcopy(self._documents[user_id])

    async def put(self, user_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._documents[user_id] = copy.deepcopy(document)

    async def update(self, user_id: str, mutate: Mutator) -> Any:
        with self._lock:
            if user_id not in self._documents:
                raise UserDocumentNotFound(user_id)
            working = copy.deepcopy(self._documents[user_id])
            result = mutate(working)
            self._documents[user_id] = working
            return result


class SqlDocumentStore:
    def __init__(self, session_factory: sessionmaker, *, max_retries: int = 5) -> None:
        self._session_factory = session_factory
        self._max_retries = max(int(max_retries), 1)

    def _load_row(self, db: Session, user_id: str) -> UserDocument:
        row = db.get(UserDocument, user_id)
        if row is None:
            raise UserDocumentNotFound(user_id)
        return row

    @staticmethod
    def _decode(row: UserDocument) -> dict[str, Any]:
        try:
            payload = json.loads(row.payload or "{}")
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt document for {row.user_id}: {exc}") from exc
        return payload if isinstance(payload, dict) else {}

    def _get_sync(self, user_id: str) -> dict[str, Any]:
        db = self._session_factory()
        try:
            return self._decode(self._load_row(db, user_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read document for {user_id}") from exc
        finally:
            db.close()

    def _put_sync(self, user_id: str, document: dict[str, Any]) -> None:
        db = self._session_factory()
        try:
            row = db.get(UserDocument, user_id)
            encoded = json.dumps(document)
            if row is None:
                db.add(UserDocument(user_id=user_id, payload=encoded, version=1))
            else:
                row.payload = encoded
                row.version = int(row.version or 0) + 1
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to write document for {user_id}") from exc
        finally:
            db.close()

    def _update_sync(self, user_id: str, mutate: Mutator) -> Any:
        for attempt in range(1, self._max_retries + 1):
            db = self._session_factory()
            try:
                row = self._load_row(db, user_id)
                version = int(row.version or 0)
                working = self._decode(row)
                result = mutate(working)
                swapped = db.execute(
                    update(UserDocument)
                    .where(UserDocument.user_id == user_id, UserDocument.version == version)
                    .values(payload=json.dumps(working), version=version + 1, updated_at=datetime.utcnow())
                )
                if swapped.rowcount == 1:
                    db.commit()
                    return result
                db.rollback()
                logger.debug("Document version conflict for %s (attempt %d)", user_id, attempt)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to update document for {user_id}") from exc
            finally:
                db.close()
        raise PersistenceError(f"Gave up updating document for {user_id} after {self._max_retries} conflicts")

    async def get(self, user_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, user_id)

    async def put(self, user_id: str, document: dict[str, Any]) -> None:
        await asyncio.to_thread(self._put_sync, user_id, document)

    async def update(self, user_id: str, mutate: Mutator) -> Any:
        return await asyncio.to_thread(self._update_sync, user_id, mutate)
