"""
Durable session store (SQLAlchemy).

Every write replaces the full aggregate for a session id; the metadata column is a
lightweight copy used by the session browser so listing never loads slide media.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lecture_live.db.base import Base
from lecture_live.models.lecture_session import LectureSessionRecord
from lecture_live.schemas.lecture import LectureSession, LectureSessionMetadata

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    pass


class SessionStore:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        if session_factory is None:
            from lecture_live.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self._schema_ready = False

    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        db = self._session_factory()
        try:
            Base.metadata.create_all(bind=db.get_bind(), tables=[LectureSessionRecord.__table__])
            self._schema_ready = True
        finally:
            db.close()

    @staticmethod
    def _apply(record: LectureSessionRecord, session: LectureSession) -> None:
        record.file_name = session.file_name
        record.created_at = session.created_at
        record.metadata_json = LectureSessionMetadata.from_session(session).model_dump(mode="json")
        record.payload = session.model_dump(mode="json")

    def add_session(self, session: LectureSession) -> LectureSession:
        self.ensure_schema()
        db = self._session_factory()
        try:
            record = LectureSessionRecord(id=session.id)
            self._apply(record, session)
            db.add(record)
            db.commit()
            logger.info("lecture_session_added session_id=%s slides=%s", session.id, len(session.slides))
            return session
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_session(self, session: LectureSession) -> LectureSession:
        """Upsert the whole aggregate."""
        self.ensure_schema()
        db = self._session_factory()
        try:
            record = db.get(LectureSessionRecord, session.id)
            if record is None:
                record = LectureSessionRecord(id=session.id)
                db.add(record)
            self._apply(record, session)
            db.commit()
            logger.debug(
                "lecture_session_saved session_id=%s transcript=%s reports=%s",
                session.id,
                len(session.transcript),
                len(session.usage_reports),
            )
            return session
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_session(self, session_id: str) -> Optional[LectureSession]:
        self.ensure_schema()
        db = self._session_factory()
        try:
            record = db.get(LectureSessionRecord, session_id)
            if record is None:
                return None
            return LectureSession.model_validate(record.payload)
        finally:
            db.close()

    def require_session(self, session_id: str) -> LectureSession:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions_metadata(self) -> List[LectureSessionMetadata]:
        """Newest first; slides and transcript are never loaded."""
        self.ensure_schema()
        db = self._session_factory()
        try:
            rows = db.execute(
                select(LectureSessionRecord.metadata_json).order_by(LectureSessionRecord.created_at.desc())
            ).scalars().all()
        finally:
            db.close()

        items: List[LectureSessionMetadata] = []
        for raw in rows:
            try:
                items.append(LectureSessionMetadata.model_validate(raw))
            except ValueError:
                logger.warning("lecture_session_metadata_invalid", exc_info=True)
        return items

    def delete_session(self, session_id: str) -> bool:
        self.ensure_schema()
        db = self._session_factory()
        try:
            record = db.get(LectureSessionRecord, session_id)
            if record is None:
                return False
            db.delete(record)
            db.commit()
            logger.info("lecture_session_deleted session_id=%s", session_id)
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def clear_all_sessions(self) -> int:
        self.ensure_schema()
        db = self._session_factory()
        try:
            count = db.query(LectureSessionRecord).delete()
            db.commit()
            return int(count or 0)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
