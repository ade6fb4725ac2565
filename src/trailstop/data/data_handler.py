# file: trailstop/data/data_handler.py

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

import pandas as pd

from trailstop.core.errors import DataUnavailableError, UnsupportedIntervalError
from trailstop.data.klines import KLINE_COLUMNS, Candle, candles_to_frame
from trailstop.exchange.gateway import ExchangeGateway
from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_KLINES_PER_REQUEST = 1000  # Binance REST limit
PAGE_PAUSE_SECONDS = 0.3

_UNIT_MS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
}

DateLike = Union[str, int, float, datetime, pd.Timestamp]


def interval_to_ms(interval: str) -> int:
    """'15m' -> 900000. Months ('1M') are not fixed-width and are rejected."""
    interval = str(interval).strip()
    unit = interval[-1:]
    if unit not in _UNIT_MS:
        raise UnsupportedIntervalError(f"Unsupported interval unit: {unit!r} in {interval!r}")
    try:
        value = int(interval[:-1])
    except ValueError as e:
        raise UnsupportedIntervalError(f"Invalid interval: {interval!r}") from e
    if value <= 0:
        raise UnsupportedIntervalError(f"Invalid interval: {interval!r}")
    return value * _UNIT_MS[unit]


def to_epoch_ms(value: DateLike) -> int:
    """ISO string, datetime or epoch-ms number -> epoch ms. Naive values are UTC."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone.utc)
    return int(ts.value // 1_000_000)


class HistoricalDataHandler:
    """Loads a gap-checked, duplicate-free, ascending kline series from the exchange."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        symbol: str,
        timeframe: str,
        page_size: int = MAX_KLINES_PER_REQUEST,
        pause_seconds: float = PAGE_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self.symbol = symbol
        self.timeframe = timeframe
        self.page_size = page_size
        self.pause_seconds = pause_seconds
        self._sleep = sleep

    def load(self, start: DateLike, end: DateLike) -> List[Candle]:
        start_ms = to_epoch_ms(start)
        end_ms = to_epoch_ms(end)
        step = interval_to_ms(self.timeframe)

        logger.info(f"Loading klines {self.symbol} [{self.timeframe}] {start} -> {end}")

        rows: List[list] = []
        current_start = start_ms
        pages = 0
        while current_start < end_ms:
            if pages:
                # pacing between pages to respect the API rate limits
                self._sleep(self.pause_seconds)

            current_end = min(current_start + (self.page_size - 1) * step, end_ms)
            logger.debug(f"Fetching klines {current_start} -> {current_end}")

            page = self.gateway.get_historical_klines(
                self.symbol,
                self.timeframe,
                self.page_size,
                start_time=current_start,
                end_time=current_end,
            )
            pages += 1

            if not page:
                logger.debug("Empty page, no more data in range.")
                break

            rows.extend(page)
            logger.debug(f"Loaded {len(page)} klines in this page. Total loaded: {len(rows)}")
            current_start = int(page[-1][0]) + step

        candles = self._clean(rows, start_ms, end_ms)
        if not candles:
            raise DataUnavailableError(
                f"No historical data for {self.symbol} [{self.timeframe}] between {start} and {end}"
            )

        logger.info(f"Finished loading data. Total unique klines: {len(candles)} in {pages} page(s)")
        return candles

    @staticmethod
    def _clean(rows: List[list], start_ms: int, end_ms: int) -> List[Candle]:
        """Range filter, first-wins dedup on open_time, ascending sort."""
        if not rows:
            return []

        df = pd.DataFrame([(list(r) + [0] * 12)[:12] for r in rows], columns=KLINE_COLUMNS)
        df["open_time"] = df["open_time"].astype("int64")
        df["close_time"] = df["close_time"].astype("int64")

        df = df[(df["open_time"] >= start_ms) & (df["close_time"] <= end_ms)]
        df = df.drop_duplicates(subset="open_time", keep="first")
        df = df.sort_values("open_time", kind="stable")

        return [Candle.from_wire(row) for row in df.itertuples(index=False, name=None)]

    def get_ohlcv(self, start: DateLike, end: Optional[DateLike] = None) -> pd.DataFrame:
        end = end if end is not None else datetime.now(timezone.utc)
        return candles_to_frame(self.load(start, end))
