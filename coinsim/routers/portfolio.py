from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from coinlib.coingecko import PriceFeed
from coinlib.valuation import value_portfolio
from ..auth import get_current_user_id
from ..database import get_db
from ..exceptions import PortfolioNotFound
from ..models import Portfolio
from .crypto import get_price_feed

router = APIRouter(tags=["portfolio"])


@router.get("/portfolio")
def get_portfolio(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    feed: PriceFeed = Depends(get_price_feed),
):
    portfolio = db.query(Portfolio).filter(Portfolio.user_id == user_id).first()
    if not portfolio:
        raise PortfolioNotFound()

    valuation = value_portfolio(portfolio.usd_balance, portfolio.holdings, feed.prices())
    return valuation.to_dict()
