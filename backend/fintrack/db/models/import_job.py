"""Durable record of each CSV import attempt."""

import enum
import uuid

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from fintrack.db.base import Base, JSONType


class ImportStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED})


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default=ImportStatus.PENDING.value)
    mapping = Column(JSONType, nullable=False)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    success_rows = Column(Integer, nullable=False, default=0)
    error_rows = Column(Integer, nullable=False, default=0)
    error_details = Column(JSONType)
    error_message = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_terminal(self) -> bool:
        return ImportStatus(self.status).is_terminal

    @property
    def progress_percent(self) -> int:
        """Client-facing percentage, denominator-stable once total_rows is set."""
        if self.status == ImportStatus.COMPLETED.value:
            return 100
        if not self.total_rows:
            return 0
        return round(self.processed_rows / self.total_rows * 100)
