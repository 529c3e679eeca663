"""Resolve account/category names from CSV cells to the user's records."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from types import MappingProxyType

from sqlalchemy import select
from sqlalchemy.orm import Session

from fintrack.core.exceptions import NoActiveAccountError
from fintrack.db.models.account import Account, Category

logger = logging.getLogger(__name__)


def _key(name: str | None) -> str:
    return (name or "").strip().lower()


class LookupResolver:
    """Case-insensitive exact-name index, loaded once per job.

    Accounts fall back to the first active account; categories fall back
    to None. Neither lookup ever fails a row.
    """

    def __init__(self, accounts: Iterable[Account], categories: Iterable[Category]):
        accounts = list(accounts)
        if not accounts:
            raise NoActiveAccountError("No hay cuentas disponibles para importar")
        self.default_account_id: str = accounts[0].id

        account_index: dict[str, str] = {}
        for account in accounts:
            # First account wins when two share a name
            account_index.setdefault(_key(account.name), account.id)
        category_index: dict[str, str] = {}
        for category in categories:
            category_index.setdefault(_key(category.name), category.id)

        self._accounts = MappingProxyType(account_index)
        self._categories = MappingProxyType(category_index)

    @classmethod
    def for_user(cls, session: Session, user_id: str) -> "LookupResolver":
        """Snapshot the user's active accounts and categories."""
        accounts = session.scalars(
            select(Account)
            .where(Account.user_id == user_id, Account.is_active.is_(True))
            .order_by(Account.created_at, Account.id)
        ).all()
        categories = session.scalars(
            select(Category)
            .where(Category.user_id == user_id, Category.is_active.is_(True))
            .order_by(Category.created_at, Category.id)
        ).all()
        logger.info(
            f"Loaded {len(accounts)} accounts and {len(categories)} categories for user {user_id}"
        )
        return cls(accounts, categories)

    def resolve_account(self, name: str | None) -> str:
        key = _key(name)
        if not key:
            return self.default_account_id
        return self._accounts.get(key, self.default_account_id)

    def resolve_category(self, name: str | None) -> str | None:
        key = _key(name)
        if not key:
            return None
        return self._categories.get(key)
