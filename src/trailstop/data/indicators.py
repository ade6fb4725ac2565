# file: trailstop/data/indicators.py

from typing import Iterable, Optional, Union

import pandas as pd

from trailstop.data.klines import Candle, candles_to_frame


def true_range(df: pd.DataFrame) -> pd.Series:
    """
    TR per row against the previous close. The first row has no previous
    close and is left as NaN.
    """
    high = df["high"]
    low = df["low"]
    close_prev = df["close"].shift(1)

    tr1 = high - low
    tr2 = (high - close_prev).abs()
    tr3 = (low - close_prev).abs()

    tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
    tr[close_prev.isna()] = float("nan")
    return tr


def average_true_range(data: Union[pd.DataFrame, Iterable[Candle]]) -> Optional[float]:
    """
    Simple (not exponential) mean of the true ranges of rows 1..N-1.
    Returns None with fewer than two candles.
    """
    df = data if isinstance(data, pd.DataFrame) else candles_to_frame(data)
    if len(df) < 2:
        return None
    tr = true_range(df).iloc[1:]
    return float(tr.mean())
