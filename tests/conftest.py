import os
from collections.abc import Generator

import pytest

# must be set before freshbite_cart is imported, settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["ENVIRONMENT"] = "test"
os.environ["CART_RETRY_BACKOFF_SECONDS"] = "0"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from freshbite_cart.data.database import Base, build_engine, get_db  # noqa: E402
from freshbite_cart.data import models  # noqa: E402,F401
from freshbite_cart.main import app  # noqa: E402
from freshbite_cart.services.cart_service import CartService  # noqa: E402
from freshbite_cart.services.rate_limit_service import cart_rate_limit, read_rate_limit  # noqa: E402


@pytest.fixture
def session_factory(tmp_path):
    # file database: every session gets its own connection, like separate requests
    engine = build_engine(f"sqlite:///{tmp_path / 'cart.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def service(db) -> CartService:
    return CartService(db)


@pytest.fixture
def override_db(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(override_db) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    # limiter buckets are process-global and leak across tests
    cart_rate_limit.reset()
    read_rate_limit.reset()
    yield
    cart_rate_limit.reset()
    read_rate_limit.reset()
