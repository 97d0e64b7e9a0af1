"""Persistent store for the single live UserData aggregate."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from habitloop.core.config import settings
from habitloop.db.models.user_data_record import UserDataRecord
from habitloop.domain.models import UserData
from habitloop.observability.metrics import log_metric

logger = logging.getLogger(__name__)


class UserDataStore:
    """Load/save one JSON document keyed by a fixed identifier.

    Writes are best effort: a failed save is logged and reported through the
    return value, never raised, so the in-memory aggregate stays authoritative.
    """

    def __init__(self, session_factory: Callable[[], Session], key: str | None = None) -> None:
        self._session_factory = session_factory
        self.key = key or settings.user_data_key

    def load(self) -> Optional[UserData]:
        session = self._session_factory()
        try:
            record = session.get(UserDataRecord, self.key)
            if record is None:
                return None
            payload = record.payload
        except SQLAlchemyError:
            logger.exception("Unable to read saved state %s", self.key)
            return None
        except ValueError as exc:
            # the JSON column decodes on read; raw text that is not JSON lands here
            logger.warning("Ignoring undecodable saved state %s: %s", self.key, exc)
            log_metric("store.corrupt", 1, metadata={"key": self.key})
            return None
        finally:
            session.close()

        try:
            return UserData.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring corrupt saved state %s: %s", self.key, exc.error_count())
            log_metric("store.corrupt", 1, metadata={"key": self.key})
            return None

    def save(self, user_data: UserData) -> bool:
        payload = user_data.model_dump(mode="json", by_alias=True)
        session = self._session_factory()
        try:
            record = self._existing(session)
            if record is None:
                session.add(UserDataRecord(key=self.key, payload=payload))
            else:
                record.payload = payload
            session.commit()
            return True
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to persist state %s; keeping in-memory copy", self.key)
            log_metric("store.save_failed", 1, metadata={"key": self.key})
            return False
        finally:
            session.close()

    def clear(self) -> None:
        session = self._session_factory()
        try:
            record = self._existing(session)
            if record is not None:
                session.delete(record)
            session.commit()
        finally:
            session.close()

    def _existing(self, session: Session) -> Optional[UserDataRecord]:
        """Current row, or ``None`` after dropping one whose payload cannot be decoded."""
        try:
            return session.get(UserDataRecord, self.key)
        except ValueError:
            logger.warning("Replacing undecodable saved state %s", self.key)
            session.rollback()
            session.execute(delete(UserDataRecord).where(UserDataRecord.key == self.key))
            return None
