"""
Trade execution against a user's simulated portfolio.

An order is validated, then applied inside a single unit of work: the ledger
row, the balance change and the holding change commit together or not at all.
Concurrent orders for the same user are serialized by a per-user lock around
the whole read-validate-write sequence.
"""
import logging
import math
import threading
import weakref
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coinlib.coingecko import is_supported

from .database import unit_of_work
from .exceptions import (
    InsufficientFunds,
    InsufficientPosition,
    PortfolioNotFound,
    StalePrice,
    TradeExecutionError,
    ValidationError,
)
from .models import Holding, Portfolio, Trade

logger = logging.getLogger("Trading")

BUY = "BUY"
SELL = "SELL"


class TradeOrder(BaseModel):
    symbol: Optional[str] = None
    type: Optional[str] = None  # BUY / SELL
    amount: Optional[float] = Field(None, allow_inf_nan=False)
    price: Optional[float] = Field(None, allow_inf_nan=False)  # USD per unit, as quoted to the client
    total: Optional[float] = Field(None, allow_inf_nan=False)  # USD, as computed by the client


_locks_guard = threading.Lock()
# Entries vanish once no request holds the lock
_user_locks = weakref.WeakValueDictionary()


def _user_lock(user_id) -> threading.Lock:
    with _locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = threading.Lock()
        return lock


def validate_order(order: TradeOrder) -> TradeOrder:
    """Reject malformed orders; returns a copy with symbol/type upper-cased."""
    if not (order.symbol and order.type and order.amount and order.price and order.total):
        raise ValidationError("Missing required fields")
    if not all(math.isfinite(v) for v in (order.amount, order.price, order.total)):
        raise ValidationError("Amount, price and total must be finite numbers")
    if order.amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    if order.price <= 0 or order.total <= 0:
        raise ValidationError("Price and total must be greater than 0")

    symbol = order.symbol.upper()
    side = order.type.upper()
    if not is_supported(symbol):
        raise ValidationError(f"Unsupported symbol: {order.symbol}")
    if side not in (BUY, SELL):
        raise ValidationError(f"Unsupported trade type: {order.type}")
    return order.model_copy(update={"symbol": symbol, "type": side})


def check_price(order: TradeOrder, market_price: Optional[float], tolerance_pct: Optional[float]):
    if tolerance_pct is None or not market_price:
        return
    deviation = abs(order.price - market_price) / market_price * 100
    if deviation > tolerance_pct:
        raise StalePrice(
            f"Order price {order.price} deviates {deviation:.2f}% from market price {market_price}"
        )


def _apply_buy(db: Session, portfolio: Portfolio, holding: Optional[Holding], order: TradeOrder):
    portfolio.usd_balance -= order.total

    if holding:
        # Weighted average cost
        new_amount = holding.amount + order.amount
        new_cost = (holding.amount * holding.avg_buy_price) + order.total
        holding.avg_buy_price = new_cost / new_amount
        holding.amount = new_amount
    else:
        portfolio.holdings.append(Holding(
            symbol=order.symbol,
            amount=order.amount,
            avg_buy_price=order.price,
        ))


def _apply_sell(db: Session, portfolio: Portfolio, holding: Holding, order: TradeOrder):
    portfolio.usd_balance += order.total

    if holding.amount == order.amount:
        portfolio.holdings.remove(holding)
        db.delete(holding)
    else:
        # Cost basis is kept on partial sells
        holding.amount -= order.amount


def _execute(db: Session, user_id, order: TradeOrder) -> Trade:
    portfolio = (
        db.query(Portfolio)
        .filter(Portfolio.user_id == user_id)
        .with_for_update()
        .first()
    )
    if not portfolio:
        raise PortfolioNotFound()

    holding = next((h for h in portfolio.holdings if h.symbol == order.symbol), None)

    if order.type == BUY and order.total > portfolio.usd_balance:
        raise InsufficientFunds()
    if order.type == SELL and (not holding or holding.amount < order.amount):
        raise InsufficientPosition()

    trade = Trade(
        user_id=user_id,
        symbol=order.symbol,
        type=order.type,
        amount=order.amount,
        price=order.price,
        total=order.total,
    )
    db.add(trade)

    if order.type == BUY:
        _apply_buy(db, portfolio, holding, order)
    else:
        _apply_sell(db, portfolio, holding, order)

    db.flush()
    return trade


def execute_trade(db: Session, user_id, order: TradeOrder,
                  market_price: Optional[float] = None,
                  tolerance_pct: Optional[float] = None) -> Trade:
    """
    Validate and apply one order for `user_id`.

    Raises ValidationError, PortfolioNotFound, InsufficientFunds,
    InsufficientPosition or StalePrice before anything is written, and
    TradeExecutionError if the store fails while applying the order. Nothing
    is retried; the caller resubmits.
    """
    order = validate_order(order)
    check_price(order, market_price, tolerance_pct)

    with _user_lock(user_id):
        try:
            with unit_of_work(db):
                trade = _execute(db, user_id, order)
        except SQLAlchemyError as e:
            logger.exception(f"Trade failed for user {user_id}: {order.type} {order.amount} {order.symbol}")
            raise TradeExecutionError() from e

    logger.info(f"Executed {order.type} {order.amount} {order.symbol} @ {order.price} for user {user_id}")
    return trade


def trade_history(db: Session, user_id, limit: int = 10):
    return (
        db.query(Trade)
        .filter(Trade.user_id == user_id)
        .order_by(Trade.created_at.desc(), Trade.id.desc())
        .limit(limit)
        .all()
    )
