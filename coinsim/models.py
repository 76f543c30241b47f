from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .database import Base


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    portfolio = relationship("Portfolio", back_populates="user", uselist=False, cascade="all, delete-orphan")
    trades = relationship("Trade", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")


class Portfolio(Base):
    __tablename__ = "portfolios"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    usd_balance = Column(Float, nullable=False, default=0.0)

    user = relationship("User", back_populates="portfolio")
    holdings = relationship("Holding", back_populates="portfolio", cascade="all, delete-orphan")


class Holding(Base):
    __tablename__ = "holdings"

    id = Column(Integer, primary_key=True, index=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False, index=True)
    symbol = Column(String, nullable=False)  # BTC, ETH, ...
    amount = Column(Float, nullable=False)
    avg_buy_price = Column(Float, nullable=False)  # USD cost basis per unit

    portfolio = relationship("Portfolio", back_populates="holdings")

    __table_args__ = (UniqueConstraint("portfolio_id", "symbol", name="_portfolio_symbol_uc"),)


class Trade(Base):
    """Append-only ledger entry. Rows are never updated or deleted."""
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    symbol = Column(String, nullable=False)
    type = Column(String, nullable=False)  # BUY / SELL
    amount = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", back_populates="trades")

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "symbol": self.symbol,
            "type": self.type,
            "amount": self.amount,
            "price": self.price,
            "total": self.total,
            # Stored naive in UTC
            "createdAt": self.created_at.replace(tzinfo=timezone.utc).isoformat() if self.created_at else None,
        }


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="sessions")
