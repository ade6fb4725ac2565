# file: trailstop/data/klines.py

from dataclasses import dataclass, astuple
from datetime import datetime, timezone
from typing import Iterable, List, Sequence

import pandas as pd

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_asset_volume", "number_of_trades",
    "taker_buy_base_volume", "taker_buy_quote_volume", "ignore"
]


@dataclass(frozen=True)
class Candle:
    """One kline in Binance REST order. Times are epoch milliseconds."""

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    close_time: int = 0
    quote_volume: float = 0.0
    trade_count: int = 0
    buy_volume: float = 0.0
    buy_quote_volume: float = 0.0
    ignored: str = "0"

    @classmethod
    def from_wire(cls, row: Sequence) -> "Candle":
        """Parses the 12-field positional kline; numeric fields arrive as decimal strings."""
        if len(row) < 7:
            raise ValueError(f"Kline row needs at least 7 fields, got {len(row)}")
        padded = list(row) + [0] * (12 - len(row))
        return cls(
            open_time=int(padded[0]),
            open=float(padded[1]),
            high=float(padded[2]),
            low=float(padded[3]),
            close=float(padded[4]),
            volume=float(padded[5]),
            close_time=int(padded[6]),
            quote_volume=float(padded[7]),
            trade_count=int(padded[8]),
            buy_volume=float(padded[9]),
            buy_quote_volume=float(padded[10]),
            ignored=str(padded[11]),
        )

    def to_wire(self) -> list:
        return list(astuple(self))

    @property
    def open_dt(self) -> datetime:
        return ms_to_datetime(self.open_time)

    @property
    def close_dt(self) -> datetime:
        return ms_to_datetime(self.close_time)


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def parse_klines(rows: Iterable[Sequence]) -> List[Candle]:
    return [Candle.from_wire(row) for row in rows]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """OHLCV frame indexed by open datetime, same shape the historical handler returns."""
    df = pd.DataFrame([c.to_wire() for c in candles], columns=KLINE_COLUMNS)
    df["open_time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)

    df = df[["open_time", "open", "high", "low", "close", "volume"]].copy()
    df = df.rename(columns={"open_time": "datetime"})

    numeric_cols = ["open", "high", "low", "close", "volume"]
    for c in numeric_cols:
        df[c] = df[c].astype(float)

    df.set_index("datetime", inplace=True)
    return df
