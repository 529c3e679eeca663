"""Shared test fixtures."""

import os
from datetime import datetime, timedelta

# Settings and the module-level engine are built at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest

from fintrack.db.init_db import init_db
from fintrack.db.models import Account, Category, ImportJob, ImportStatus
from fintrack.db.session import build_engine, build_session_factory
from fintrack.services.progress_tracker import InMemoryProgressTracker

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
BASE_TIME = datetime(2024, 1, 1, 9, 0, 0)

DEFAULT_MAPPING = {"date": "Fecha", "amount": "Monto", "description": "Descripcion"}


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def progress():
    return InMemoryProgressTracker()


@pytest.fixture
def add_account(session):
    """Create an account; created_at is explicit so creation order is deterministic."""
    counter = {"n": 0}

    def _add(name, user_id=USER_ID, is_active=True, created_at=None):
        counter["n"] += 1
        account = Account(
            user_id=user_id,
            name=name,
            is_active=is_active,
            created_at=created_at or BASE_TIME + timedelta(minutes=counter["n"]),
        )
        session.add(account)
        session.commit()
        return account

    return _add


@pytest.fixture
def add_category(session):
    def _add(name, user_id=USER_ID, type="EXPENSE", is_active=True):
        category = Category(user_id=user_id, name=name, type=type, is_active=is_active)
        session.add(category)
        session.commit()
        return category

    return _add


@pytest.fixture
def accounts(add_account):
    """Two active accounts for USER_ID; the first created is the fallback."""
    return [add_account("Banco Popular"), add_account("Efectivo")]


@pytest.fixture
def make_job(session):
    """Insert a PENDING job the way submission would."""
    counter = {"n": 0}

    def _make(user_id=USER_ID, filename="extracto.csv", mapping=None, **fields):
        counter["n"] += 1
        fields.setdefault("status", ImportStatus.PENDING.value)
        fields.setdefault("created_at", BASE_TIME + timedelta(minutes=counter["n"]))
        job = ImportJob(
            user_id=user_id,
            filename=filename,
            mapping=mapping or DEFAULT_MAPPING,
            **fields,
        )
        session.add(job)
        session.commit()
        return job

    return _make
