"""
Portfolio valuation - pure projection of balance + holdings + quotes.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping


@dataclass
class HoldingValuation:
    symbol: str
    amount: float
    avg_buy_price: float
    current_price: float
    value: float
    invested: float
    profit_loss: float
    profit_loss_pct: float

    def to_dict(self) -> Dict:
        return {
            "symbol": self.symbol,
            "amount": self.amount,
            "avgBuyPrice": self.avg_buy_price,
            "currentPrice": self.current_price,
            "value": self.value,
            "profitLoss": self.profit_loss,
            "profitLossPercentage": self.profit_loss_pct,
        }


@dataclass
class PortfolioValuation:
    usd_balance: float
    total_value: float
    total_invested: float
    total_profit_loss: float
    profit_loss_pct: float
    holdings: List[HoldingValuation] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "usdBalance": self.usd_balance,
            "totalValue": self.total_value,
            "totalInvested": self.total_invested,
            "totalProfitLoss": self.total_profit_loss,
            "profitLossPercentage": self.profit_loss_pct,
            "holdings": [h.to_dict() for h in self.holdings],
        }


def _pct(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def quote_price(prices: Mapping[str, Mapping], symbol: str) -> float:
    """Current price for `symbol`, 0 when there is no usable quote."""
    quote = prices.get(symbol) or {}
    return float(quote.get("current_price") or 0)


def value_holding(holding, prices: Mapping[str, Mapping]) -> HoldingValuation:
    """`holding` is anything with symbol, amount and avg_buy_price attributes."""
    current_price = quote_price(prices, holding.symbol)
    value = holding.amount * current_price
    invested = holding.amount * holding.avg_buy_price
    profit_loss = value - invested
    return HoldingValuation(
        symbol=holding.symbol,
        amount=holding.amount,
        avg_buy_price=holding.avg_buy_price,
        current_price=current_price,
        value=value,
        invested=invested,
        profit_loss=profit_loss,
        profit_loss_pct=_pct(profit_loss, invested),
    )


def value_portfolio(usd_balance: float, holdings: Iterable, prices: Mapping[str, Mapping]) -> PortfolioValuation:
    """
    Value a portfolio against a quote map.

    Cash counts toward both total value and total invested, so the aggregate
    percentage is P&L relative to everything the user has (cash + cost basis).
    A held symbol missing from `prices` is valued at 0 rather than skipped.
    """
    rows = [value_holding(h, prices) for h in holdings]

    total_value = usd_balance + sum(r.value for r in rows)
    total_invested = usd_balance + sum(r.invested for r in rows)
    total_profit_loss = sum(r.profit_loss for r in rows)

    return PortfolioValuation(
        usd_balance=usd_balance,
        total_value=total_value,
        total_invested=total_invested,
        total_profit_loss=total_profit_loss,
        profit_loss_pct=_pct(total_profit_loss, total_invested),
        holdings=rows,
    )
