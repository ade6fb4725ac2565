# file: trailstop/data/volatility.py

import threading
from typing import Dict, Iterable, Optional

from trailstop.core.errors import DataUnavailableError
from trailstop.data.indicators import average_true_range
from trailstop.data.klines import parse_klines
from trailstop.exchange.gateway import ExchangeGateway
from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)


class VolatilityEstimator:
    """Keeps the latest ATR per symbol, refreshed from the most recent klines."""

    def __init__(self, gateway: ExchangeGateway, period: int = 14, interval: str = "1h"):
        self.gateway = gateway
        self.period = period
        self.interval = interval
        self.atr_values: Dict[str, float] = {}
        self._lock = threading.Lock()

    def compute(self, symbol: str) -> float:
        # one extra leading candle for the first true range
        rows = self.gateway.get_historical_klines(symbol, self.interval, self.period + 1)
        candles = parse_klines(rows or [])
        if len(candles) < self.period or len(candles) < 2:
            raise DataUnavailableError(
                f"Not enough data for ATR calculation for {symbol}: {len(candles)} < {self.period}"
            )
        return average_true_range(candles)

    def update(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Refreshes every symbol; symbols without enough candles are skipped
        for this cycle and keep their previous value.
        """
        updated: Dict[str, float] = {}
        for symbol in dict.fromkeys(symbols):
            try:
                atr = self.compute(symbol)
            except DataUnavailableError as e:
                logger.warning(str(e))
                continue

            with self._lock:
                self.atr_values[symbol] = atr
            updated[symbol] = atr
            logger.debug(f"Updated ATR for {symbol}: {atr}")
        return updated

    def get(self, symbol: str) -> Optional[float]:
        with self._lock:
            return self.atr_values.get(symbol)
