from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from coinlib.coingecko import PriceFeed
from ..auth import get_current_user_id
from ..config import settings
from ..database import get_db
from ..trading import TradeOrder, execute_trade, trade_history
from .crypto import get_price_feed

router = APIRouter(prefix="/trading", tags=["trading"])


@router.post("/execute")
def execute(
    order: TradeOrder,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    feed: PriceFeed = Depends(get_price_feed),
):
    tolerance = settings.TRADE_PRICE_TOLERANCE_PCT
    market_price = feed.current_price(order.symbol) if tolerance is not None and order.symbol else None

    trade = execute_trade(db, user_id, order, market_price=market_price, tolerance_pct=tolerance)
    return {
        "message": "Trade executed successfully",
        "trade": trade.to_dict(),
    }


@router.get("/history")
def history(
    limit: int = Query(10, ge=1, le=500),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return [t.to_dict() for t in trade_history(db, user_id, limit)]
