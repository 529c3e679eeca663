"""SQLAlchemy models for the accounts and categories the import resolves against."""

import uuid

from sqlalchemy import Boolean, Column, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from fintrack.db.base import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(16), nullable=False, default="BANK")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(16), nullable=False, default="EXPENSE")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
