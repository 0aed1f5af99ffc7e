"""LoopTrade — exception taxonomy.

Everything raised by the engine and its collaborators derives from
``LoopTradeError`` so callers can catch the whole family in one place.
"""


class LoopTradeError(Exception):
    """Base class for all LoopTrade errors."""


class ConfigurationError(LoopTradeError, ValueError):
    """Missing or invalid settings.  Fatal to ``load_config`` and ``start``."""


class AlreadyRunningError(LoopTradeError):
    """``start`` was called while the engine is already running."""


class EmergencyModeError(LoopTradeError):
    """``start`` was called before the emergency flag was reset."""


class InsufficientBalanceError(LoopTradeError):
    """A fill would drive the quote or base balance below zero."""

    def __init__(self, asset: str, available: float, required: float) -> None:
        super().__init__(
            f"Insufficient {asset}: available {available:.8f}, "
            f"required {required:.8f}"
        )
        self.asset = asset
        self.available = available
        self.required = required


class SlotOccupiedError(LoopTradeError):
    """An order was placed into a side that already holds an open order."""


class ExchangeConnectorError(LoopTradeError):
    """An exchange placement or cancellation failed.

    Args:
        message: Human-readable failure reason (Binance ``msg`` if present).
        status_code: HTTP status of the failed call, when there was one.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
