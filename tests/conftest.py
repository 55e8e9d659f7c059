"""Shared fixtures: an in-memory ledger database, seeded users and products."""

from datetime import datetime
from typing import Callable, Iterator
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from stock_ledger import models  # noqa: F401  registers the tables
from stock_ledger.models import Product, User
from stock_ledger.processor import TransactionProcessor
from stock_ledger.reports import ReportGenerator

FIXED_NOW = datetime(2025, 3, 14, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """A SQLite file database, so each session gets its own connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine) -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@pytest.fixture
def user(session: Session) -> User:
    clerk = User(
        username="clerk",
        email="clerk@example.com",
        hashed_password="unused",
        api_key="clerk-key",
    )
    session.add(clerk)
    session.commit()
    session.refresh(clerk)
    return clerk


@pytest.fixture
def admin(session: Session) -> User:
    admin = User(
        username="boss",
        email="boss@example.com",
        hashed_password="unused",
        api_key="admin-key",
        is_admin=True,
    )
    session.add(admin)
    session.commit()
    session.refresh(admin)
    return admin


@pytest.fixture
def make_product(session: Session) -> Callable[..., Product]:
    counter = {"n": 0}

    def _make(**fields) -> Product:
        counter["n"] += 1
        values = {
            "name": f"Product {counter['n']}",
            "sku": f"SKU-{counter['n']:03d}",
            "category": "General",
            "price": 10.0,
            "quantity": 100,
            "initial_stock": 100,
        }
        values.update(fields)
        product = Product(**values)
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    return _make


@pytest.fixture
def product(make_product) -> Product:
    return make_product(name="Widget", sku="WID-001", price=2.5)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def processor(session: Session, clock) -> TransactionProcessor:
    return TransactionProcessor(session, clock=clock)


@pytest.fixture
def reports(session: Session) -> ReportGenerator:
    return ReportGenerator(session, tz=ZoneInfo("UTC"))


@pytest.fixture
def client(engine, user, admin) -> Iterator[TestClient]:
    from stock_ledger.core import limiter
    from stock_ledger.database import get_read_session, get_write_session
    from stock_ledger.main import app

    def _session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_write_session] = _session
    app.dependency_overrides[get_read_session] = _session
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
