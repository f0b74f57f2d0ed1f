"""Database persistence for artwork media rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import ArtworkMedia, generate_uuid7

from .pairing import MediaRecord

LOGGER = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when deleting or inserting artwork media fails."""

    def __init__(self, message: str, *, artwork_id: int | None = None) -> None:
        super().__init__(message)
        self.artwork_id = artwork_id
        # Totals of the artworks committed before the failure, set by the driver.
        self.accounting = None


@dataclass(slots=True, frozen=True)
class OperationResult:
    ok: bool
    rowcount: int = 0
    error: Exception | None = None

    @classmethod
    def success(cls, rowcount: int = 0) -> "OperationResult":
        return cls(ok=True, rowcount=rowcount)

    @classmethod
    def failure(cls, error: Exception) -> "OperationResult":
        return cls(ok=False, error=error)


class MediaStore(Protocol):
    """Transaction-scoped access to the artwork media table."""

    def begin_transaction(self) -> None:
        ...

    def commit(self) -> OperationResult:
        ...

    def rollback(self) -> None:
        ...

    def delete_artwork_media(self, artwork_id: int) -> OperationResult:
        ...

    def insert_media(self, record: MediaRecord) -> OperationResult:
        ...


class ArtworkMediaStore:
    """SQLAlchemy-backed store holding at most one open transaction."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory
        self._session: Session | None = None

    @property
    def in_transaction(self) -> bool:
        return self._session is not None

    def begin_transaction(self) -> None:
        if self._session is not None:
            raise PersistenceError("A transaction is already open on this store")
        try:
            session = self._session_factory()
            session.begin()
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc
        self._session = session

    def _require_session(self) -> Session:
        if self._session is None:
            raise PersistenceError("No open transaction; call begin_transaction() first")
        return self._session

    def delete_artwork_media(self, artwork_id: int) -> OperationResult:
        session = self._require_session()
        try:
            result = session.execute(
                delete(ArtworkMedia).where(ArtworkMedia.artwork_id == artwork_id),
                execution_options={"synchronize_session": False},
            )
        except Exception as exc:
            return OperationResult.failure(exc)
        deleted = max(result.rowcount or 0, 0)
        LOGGER.debug("Deleted %d artwork_media row(s) for artwork_id=%d", deleted, artwork_id)
        return OperationResult.success(deleted)

    def insert_media(self, record: MediaRecord) -> OperationResult:
        session = self._require_session()
        try:
            session.add(
                ArtworkMedia(
                    id=generate_uuid7(),
                    artwork_id=record.artwork_id,
                    kind=record.kind.value,
                    image_url=record.image_url,
                    video_url=record.video_url,
                    sort_order=record.sort_order,
                    valid=record.valid,
                )
            )
            session.flush()  # surface constraint errors inside this artwork's transaction
        except Exception as exc:  # driver errors such as OverflowError bypass SQLAlchemy
            return OperationResult.failure(exc)
        return OperationResult.success(1)

    def commit(self) -> OperationResult:
        session = self._require_session()
        try:
            session.commit()
        except Exception as exc:
            # Left open so the caller's rollback() releases the connection.
            return OperationResult.failure(exc)
        self._close()
        return OperationResult.success()

    def rollback(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            session.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
