"""
CoinGecko Price Source - live quotes for the supported assets
Self-contained: no dependency on the web backend.
"""

import copy
import time
import logging
import threading
import requests
from typing import Dict, Optional

# ==========================================
# ⚙️ CONFIG
# ==========================================
class Config:
    API_BASE_URL = "https://api.coingecko.com/api/v3"
    API_HEADERS = {'User-Agent': 'Mozilla/5.0', 'Accept': 'application/json'}
    REQUEST_TIMEOUT = 5
    CACHE_SECONDS = 30

    # Ticker -> CoinGecko id. Adding an asset means adding it here and to FALLBACK_PRICES.
    SUPPORTED_ASSETS = {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "USDT": "tether",
        "USDC": "usd-coin",
        "XMR": "monero",
        "SOL": "solana",
    }

logger = logging.getLogger("CoinGecko")

PriceQuote = Dict[str, object]
PriceMap = Dict[str, PriceQuote]


class PriceSourceError(Exception):
    """The upstream price API could not produce a usable answer."""


# Static quotes served whenever the upstream is unavailable
FALLBACK_PRICES: PriceMap = {
    "BTC": {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "current_price": 45000,
        "price_change_percentage_24h": 2.5,
        "market_cap": 850000000000,
        "total_volume": 25000000000,
        "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
    },
    "ETH": {
        "id": "ethereum",
        "symbol": "eth",
        "name": "Ethereum",
        "current_price": 3000,
        "price_change_percentage_24h": -1.2,
        "market_cap": 360000000000,
        "total_volume": 15000000000,
        "image": "https://assets.coingecko.com/coins/images/279/large/ethereum.png",
    },
    "USDT": {
        "id": "tether",
        "symbol": "usdt",
        "name": "Tether",
        "current_price": 1.00,
        "price_change_percentage_24h": 0.01,
        "market_cap": 120000000000,
        "total_volume": 50000000000,
        "image": "https://assets.coingecko.com/coins/images/325/large/Tether.png",
    },
    "USDC": {
        "id": "usd-coin",
        "symbol": "usdc",
        "name": "USD Coin",
        "current_price": 1.00,
        "price_change_percentage_24h": 0.01,
        "market_cap": 80000000000,
        "total_volume": 30000000000,
        "image": "https://assets.coingecko.com/coins/images/6319/large/USD_Coin_icon.png",
    },
    "XMR": {
        "id": "monero",
        "symbol": "xmr",
        "name": "Monero",
        "current_price": 150,
        "price_change_percentage_24h": 3.2,
        "market_cap": 2700000000,
        "total_volume": 50000000,
        "image": "https://assets.coingecko.com/coins/images/69/large/monero_logo.png",
    },
    "SOL": {
        "id": "solana",
        "symbol": "sol",
        "name": "Solana",
        "current_price": 100,
        "price_change_percentage_24h": 5.8,
        "market_cap": 45000000000,
        "total_volume": 2000000000,
        "image": "https://assets.coingecko.com/coins/images/4128/large/solana.png",
    },
}


def is_supported(symbol: str) -> bool:
    return bool(symbol) and symbol.upper() in Config.SUPPORTED_ASSETS


# ==========================================
# 🌐 API CLIENT
# ==========================================
class CoinGeckoAPI:
    def __init__(self, base_url: str = None, timeout: float = None, session: requests.Session = None):
        self.base_url = (base_url or Config.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else Config.REQUEST_TIMEOUT
        self.session = session or requests.Session()

    def get_prices(self) -> PriceMap:
        """Fetch market data for every supported asset, keyed by upper-case symbol."""
        params = {
            "vs_currency": "usd",
            "ids": ",".join(Config.SUPPORTED_ASSETS.values()),
            "order": "market_cap_desc",
            "per_page": 100,
            "page": 1,
            "sparkline": "false",
            "price_change_percentage": "24h",
        }
        try:
            resp = self.session.get(f"{self.base_url}/coins/markets", params=params,
                                    headers=Config.API_HEADERS, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"CoinGecko markets request failed: {e}")
            raise PriceSourceError(str(e)) from e

        if not isinstance(data, list):
            raise PriceSourceError(f"Unexpected payload type: {type(data).__name__}")

        prices = {}
        for coin in data:
            symbol = str(coin.get("symbol", "")).upper()
            if symbol:
                prices[symbol] = coin
        return prices

    def get_price(self, symbol: str) -> Optional[PriceQuote]:
        """Quote for a single symbol, or None if missing or the API failed."""
        try:
            return self.get_prices().get(symbol.upper())
        except PriceSourceError as e:
            logger.warning(f"Price fetch failed for {symbol}: {e}")
            return None


# ==========================================
# 🗂️ CACHED FEED
# ==========================================
class PriceFeed:
    """
    Server-side cache over CoinGeckoAPI.

    Successful responses are kept for `ttl` seconds. Upstream failures are not
    retried; the caller gets FALLBACK_PRICES instead, so `prices()` never raises.
    """

    def __init__(self, api: CoinGeckoAPI = None, ttl: float = None, clock=time.monotonic):
        self.api = api or CoinGeckoAPI()
        self.ttl = ttl if ttl is not None else Config.CACHE_SECONDS
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[PriceMap] = None
        self._fetched_at = 0.0

    def prices(self) -> PriceMap:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._fetched_at < self.ttl:
                return copy.deepcopy(self._cached)
            try:
                fresh = self.api.get_prices()
            except PriceSourceError:
                logger.warning("Serving fallback prices")
                return copy.deepcopy(FALLBACK_PRICES)
            self._cached = fresh
            self._fetched_at = now
            return copy.deepcopy(fresh)

    def quote(self, symbol: str) -> Optional[PriceQuote]:
        return self.prices().get(symbol.upper())

    def current_price(self, symbol: str) -> Optional[float]:
        q = self.quote(symbol)
        if not q or q.get("current_price") is None:
            return None
        return float(q["current_price"])
