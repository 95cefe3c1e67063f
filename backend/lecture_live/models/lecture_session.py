from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, String

from lecture_live.db.base import Base


class LectureSessionRecord(Base):
    """One row per lecture: the full aggregate in `payload`, the browser row in `metadata_json`."""

    __tablename__ = "lecture_session"

    id = Column(String, primary_key=True)
    file_name = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False, index=True)
    metadata_json = Column("metadata", JSON, nullable=False)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
