from fastapi import APIRouter, Depends, HTTPException

from coinlib.coingecko import CoinGeckoAPI, PriceFeed, is_supported
from ..config import settings

router = APIRouter(prefix="/crypto", tags=["crypto"])

price_feed = PriceFeed(
    CoinGeckoAPI(base_url=settings.COINGECKO_API_URL, timeout=settings.PRICE_REQUEST_TIMEOUT),
    ttl=settings.PRICE_CACHE_SECONDS,
)


def get_price_feed() -> PriceFeed:
    return price_feed


@router.get("/prices")
def get_prices(feed: PriceFeed = Depends(get_price_feed)):
    """
    Current quotes for every supported asset, keyed by symbol.
    Falls back to static prices when CoinGecko is unavailable.
    """
    return feed.prices()


@router.get("/prices/{symbol}")
def get_price(symbol: str, feed: PriceFeed = Depends(get_price_feed)):
    if not is_supported(symbol):
        raise HTTPException(status_code=404, detail=f"Unsupported symbol: {symbol}")
    quote = feed.quote(symbol)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"No quote for {symbol.upper()}")
    return quote
