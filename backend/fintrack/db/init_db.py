"""Create the tables used by the import pipeline."""

import logging

from sqlalchemy.engine import Engine

from fintrack.db.base import Base
import fintrack.db.models  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind: Engine) -> None:
    Base.metadata.create_all(bind=bind)
    logger.info(f"Ensured tables: {', '.join(sorted(Base.metadata.tables))}")
