"""SQLAlchemy model for financial transactions."""

import enum
import uuid

from sqlalchemy import Column, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from fintrack.db.base import Base

DESCRIPTION_MAX_LENGTH = 255


class TransactionType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    ADJUSTMENT = "ADJUSTMENT"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    DEBIT_CARD = "DEBIT_CARD"
    CREDIT_CARD = "CREDIT_CARD"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    type = Column(String(16), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    date = Column(Date, nullable=False, index=True)
    description = Column(String(DESCRIPTION_MAX_LENGTH), nullable=False, default="")
    payment_method = Column(String(16), nullable=False, default=PaymentMethod.OTHER.value)
    # Per-row idempotency key for redelivered import jobs
    import_job_id = Column(
        String(36), ForeignKey("import_jobs.id", ondelete="SET NULL"), nullable=True
    )
    import_row = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("import_job_id", "import_row", name="uq_transactions_import_row"),
    )
