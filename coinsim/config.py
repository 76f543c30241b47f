import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Project root (the folder holding run_app.py)
BASE_DIR = Path(__file__).resolve().parent.parent


def _optional_float(name: str):
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


class Settings:
    PROJECT_NAME: str = "Coinfolio Sim"
    PROJECT_VERSION: str = "1.0.0"

    # DATABASE
    DATABASE_URL: str = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'coinfolio.db'}")

    # SECURITY
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

    # PRICE SOURCE
    COINGECKO_API_URL: str = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
    PRICE_CACHE_SECONDS: float = float(os.getenv("PRICE_CACHE_SECONDS", "30"))
    PRICE_REQUEST_TIMEOUT: float = float(os.getenv("PRICE_REQUEST_TIMEOUT", "5"))

    # TRADING
    STARTING_BALANCE: float = float(os.getenv("STARTING_BALANCE", "10000"))
    # Max % deviation of an order price from the live quote. Unset = no check.
    TRADE_PRICE_TOLERANCE_PCT = _optional_float("TRADE_PRICE_TOLERANCE_PCT")

    # SERVER
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: list = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
