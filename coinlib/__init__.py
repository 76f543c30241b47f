# Self-contained library modules for coinsim
from coinlib.coingecko import CoinGeckoAPI, PriceFeed, PriceSourceError, FALLBACK_PRICES, Config as PriceConfig
from coinlib.valuation import HoldingValuation, PortfolioValuation, value_holding, value_portfolio
