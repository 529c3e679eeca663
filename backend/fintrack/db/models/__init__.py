"""Database models package."""
from fintrack.db.models.account import Account, Category
from fintrack.db.models.import_job import ImportJob, ImportStatus
from fintrack.db.models.transaction import PaymentMethod, Transaction, TransactionType

__all__ = [
    "Account",
    "Category",
    "ImportJob",
    "ImportStatus",
    "PaymentMethod",
    "Transaction",
    "TransactionType",
]
