"""Request-scoped database session dependency."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from fintrack.db.session import get_db


def get_session() -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error."""
    yield from get_db()
