import gc
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

import coinsim.trading as trading
from coinsim.exceptions import (
    InsufficientFunds,
    InsufficientPosition,
    PortfolioNotFound,
    StalePrice,
    TradeExecutionError,
    ValidationError,
)
from coinsim.auth import create_user
from coinsim.database import Base
from coinsim.models import Holding, Portfolio, Trade, User
from coinsim.trading import TradeOrder, check_price, execute_trade, trade_history


def order(symbol="BTC", type="BUY", amount=1.0, price=100.0, total=None):
    return TradeOrder(symbol=symbol, type=type, amount=amount, price=price,
                      total=total if total is not None else amount * price)


def holding_for(db, user, symbol):
    return db.query(Holding).filter_by(portfolio_id=user.portfolio.id, symbol=symbol).first()


def test_first_buy_creates_holding_at_order_price(db_session, user):
    trade = execute_trade(db_session, user.id, order(amount=0.1, price=45000, total=4500))

    assert trade.id is not None
    assert user.portfolio.usd_balance == pytest.approx(5500)
    h = holding_for(db_session, user, "BTC")
    assert h.amount == pytest.approx(0.1)
    assert h.avg_buy_price == 45000


def test_second_buy_uses_weighted_average_cost(db_session, user):
    execute_trade(db_session, user.id, order(amount=1, price=100))
    execute_trade(db_session, user.id, order(amount=1, price=200))

    h = holding_for(db_session, user, "BTC")
    assert h.amount == 2
    assert h.avg_buy_price == pytest.approx(150)
    assert user.portfolio.usd_balance == pytest.approx(10000 - 300)


def test_partial_sell_keeps_cost_basis(db_session, user):
    execute_trade(db_session, user.id, order(amount=2, price=150))
    execute_trade(db_session, user.id, order(type="SELL", amount=0.5, price=400))

    h = holding_for(db_session, user, "BTC")
    assert h.amount == pytest.approx(1.5)
    assert h.avg_buy_price == pytest.approx(150)
    assert user.portfolio.usd_balance == pytest.approx(10000 - 300 + 200)


def test_full_sell_removes_holding_but_keeps_ledger(db_session, user):
    execute_trade(db_session, user.id, order(symbol="ETH", amount=2, price=3000))
    execute_trade(db_session, user.id, order(symbol="ETH", type="SELL", amount=2, price=3100))

    assert holding_for(db_session, user, "ETH") is None
    assert user.portfolio.usd_balance == pytest.approx(10000 - 6000 + 6200)
    assert db_session.query(Trade).filter_by(user_id=user.id).count() == 2


def test_buy_rejected_when_a_cent_short(db_session, user):
    with pytest.raises(InsufficientFunds):
        execute_trade(db_session, user.id, order(amount=1, price=10000.01))

    assert user.portfolio.usd_balance == 10000
    assert db_session.query(Trade).count() == 0
    assert db_session.query(Holding).count() == 0


def test_buy_of_exact_balance_is_allowed(db_session, user):
    execute_trade(db_session, user.id, order(amount=1, price=10000))
    assert user.portfolio.usd_balance == 0


def test_sell_without_holding_rejected(db_session, user):
    with pytest.raises(InsufficientPosition):
        execute_trade(db_session, user.id, order(symbol="SOL", type="SELL", amount=1, price=100))
    assert user.portfolio.usd_balance == 10000


def test_sell_more_than_held_rejected(db_session, user):
    execute_trade(db_session, user.id, order(amount=1, price=100))

    with pytest.raises(InsufficientPosition):
        execute_trade(db_session, user.id, order(type="SELL", amount=1.5, price=100))

    assert holding_for(db_session, user, "BTC").amount == 1
    assert user.portfolio.usd_balance == pytest.approx(9900)
    assert db_session.query(Trade).count() == 1


@pytest.mark.parametrize("kwargs, message", [
    ({"symbol": None}, "Missing required fields"),
    ({"type": ""}, "Missing required fields"),
    ({"amount": 0}, "Missing required fields"),
    ({"amount": -1, "total": 100}, "Amount must be greater than 0"),
    ({"price": -5, "total": 5}, "Price and total must be greater than 0"),
    ({"symbol": "DOGE"}, "Unsupported symbol: DOGE"),
    ({"type": "HOLD"}, "Unsupported trade type: HOLD"),
])
def test_malformed_orders_rejected(db_session, user, kwargs, message):
    fields = {"symbol": "BTC", "type": "BUY", "amount": 1, "price": 100, "total": 100}
    fields.update(kwargs)

    with pytest.raises(ValidationError) as exc:
        execute_trade(db_session, user.id, TradeOrder(**fields))
    assert exc.value.message == message
    assert db_session.query(Trade).count() == 0


def test_lowercase_symbol_and_type_are_normalized(db_session, user):
    trade = execute_trade(db_session, user.id, order(symbol="eth", type="buy", amount=1, price=3000))
    assert (trade.symbol, trade.type) == ("ETH", "BUY")


def test_missing_portfolio(db_session):
    lonely = User(username="nobody", password_hash="x$y")
    db_session.add(lonely)
    db_session.commit()

    with pytest.raises(PortfolioNotFound):
        execute_trade(db_session, lonely.id, order())


def test_store_failure_rolls_back_everything(db_session, user, monkeypatch):
    def broken_buy(db, portfolio, holding, o):
        portfolio.usd_balance -= o.total
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(trading, "_apply_buy", broken_buy)

    with pytest.raises(TradeExecutionError):
        execute_trade(db_session, user.id, order(amount=1, price=100))

    assert db_session.query(Trade).count() == 0
    assert user.portfolio.usd_balance == 10000


def test_caller_total_is_trusted(db_session, user):
    # total is not recomputed from amount * price
    execute_trade(db_session, user.id, order(amount=1, price=100, total=90))
    assert user.portfolio.usd_balance == pytest.approx(9910)


def test_check_price_tolerance():
    o = order(price=45000)
    check_price(o, 45200, 1.0)
    check_price(o, 90000, None)
    with pytest.raises(StalePrice):
        check_price(o, 46000, 1.0)


def test_history_newest_first_with_limit(db_session, user):
    for price in (100, 200, 300):
        execute_trade(db_session, user.id, order(amount=1, price=price))

    trades = trade_history(db_session, user.id, limit=2)
    assert [t.price for t in trades] == [300, 200]


@pytest.mark.parametrize("field", ["amount", "price", "total"])
@pytest.mark.parametrize("value", [float("inf"), float("nan")])
def test_non_finite_numbers_rejected(db_session, user, field, value):
    fields = {"symbol": "BTC", "type": "BUY", "amount": 1.0, "price": 100.0, "total": 100.0}
    fields[field] = value

    with pytest.raises(ValidationError):
        execute_trade(db_session, user.id, TradeOrder.model_construct(**fields))
    assert user.portfolio.usd_balance == 10000
    assert db_session.query(Trade).count() == 0


def test_concurrent_buys_cannot_overspend(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'concurrent.db'}",
                           connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    user_id = create_user(setup, "racer", "pw").id
    setup.close()

    workers = 8
    barrier = threading.Barrier(workers)
    results = []

    def place_order():
        db = Session()
        try:
            barrier.wait()
            execute_trade(db, user_id, order(amount=1, price=6000))
            results.append("ok")
        except InsufficientFunds:
            results.append("rejected")
        finally:
            db.close()

    threads = [threading.Thread(target=place_order) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    check = Session()
    try:
        assert sorted(results) == ["ok"] + ["rejected"] * (workers - 1)
        assert check.query(Portfolio).filter_by(user_id=user_id).one().usd_balance == 4000
        assert check.query(Trade).filter_by(user_id=user_id).count() == 1
    finally:
        check.close()
        engine.dispose()


def test_user_locks_are_released_when_unused():
    lock = trading._user_lock("cleanup-user")
    assert trading._user_lock("cleanup-user") is lock

    del lock
    gc.collect()
    assert "cleanup-user" not in trading._user_locks
