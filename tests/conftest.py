import copy
from typing import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from coinlib.coingecko import FALLBACK_PRICES, PriceFeed, PriceSourceError
from coinsim.auth import create_user
from coinsim.database import Base, get_db
from coinsim.routers.crypto import get_price_feed
import coinsim.models  # noqa: F401
import coinsim.main as app_main


class StubCoinGecko:
    """Stands in for CoinGeckoAPI; flip `fail` to simulate an outage."""

    def __init__(self, prices=None):
        self.prices = prices if prices is not None else copy.deepcopy(FALLBACK_PRICES)
        self.fail = False
        self.calls = 0

    def set_price(self, symbol, price):
        self.prices[symbol]["current_price"] = price

    def get_prices(self):
        self.calls += 1
        if self.fail:
            raise PriceSourceError("upstream down")
        return copy.deepcopy(self.prices)


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def coingecko() -> StubCoinGecko:
    return StubCoinGecko()


@pytest.fixture()
def price_feed(coingecko) -> PriceFeed:
    # ttl=0 so every request sees the stub's current prices
    return PriceFeed(coingecko, ttl=0)


@pytest.fixture()
def app(db_session, price_feed) -> Generator[FastAPI, None, None]:
    app = app_main.app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_price_feed] = lambda: price_feed
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def user(db_session):
    return create_user(db_session, "alice", "s3cret")


@pytest.fixture()
def auth_headers(client) -> dict:
    resp = client.post("/api/auth/signup", json={"username": "trader", "password": "hunter2"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}
