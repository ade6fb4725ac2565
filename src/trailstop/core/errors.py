# file: trailstop/core/errors.py

"""Error taxonomy shared by the engine, the loader and the gateway."""


class TrailStopError(Exception):
    """Base class for every error raised by trailstop."""


class ConfigurationError(TrailStopError, ValueError):
    """A required configuration field is missing or invalid. Fatal before any run."""


class DataUnavailableError(TrailStopError, RuntimeError):
    """No usable candles: empty history after filtering, or too few candles for ATR."""


class UnsupportedIntervalError(TrailStopError, ValueError):
    """Kline interval unit is not one of m, h, d, w."""


class GatewayError(TrailStopError, RuntimeError):
    """An exchange call (price, klines, order placement or cancellation) failed."""

    def __init__(self, message: str, operation: str = "", symbol: str = ""):
        super().__init__(message)
        self.operation = operation
        self.symbol = symbol
