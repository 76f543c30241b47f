class CoinsimError(Exception):
    """Base for errors that map straight onto an HTTP response."""
    status_code = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class ValidationError(CoinsimError):
    """Invalid request"""
    status_code = 400


class PortfolioNotFound(CoinsimError):
    """Portfolio not found"""
    status_code = 404


class TradeRejected(CoinsimError):
    """Trade rejected"""
    status_code = 400


class InsufficientFunds(TradeRejected):
    """Insufficient USD balance"""


class InsufficientPosition(TradeRejected):
    """Insufficient crypto balance"""


class StalePrice(TradeRejected):
    """Order price is too far from the current market price"""


class TradeExecutionError(CoinsimError):
    """Trade could not be executed"""
    status_code = 500
