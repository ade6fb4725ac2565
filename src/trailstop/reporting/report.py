# file: trailstop/reporting/report.py

"""
Backtest report rendering.

Turns a BacktestResult into the human-readable summary printed at the end
of a run, and into a pandas DataFrame of trades for further analysis.
"""

from typing import Iterable, List

import pandas as pd

from trailstop.execution.order_model import ClosedTrade
from trailstop.execution.serialization import trade_to_dict

TRADE_COLUMNS = [
    "symbol", "entry_price", "exit_price", "quantity", "profit", "profit_percent",
    "open_date", "close_date", "holding_time_ms", "stop_price_at_close", "reason",
]


def trades_frame(trades: Iterable[ClosedTrade]) -> pd.DataFrame:
    """One row per closed trade, dates parsed back to timestamps."""
    df = pd.DataFrame([trade_to_dict(t) for t in trades], columns=TRADE_COLUMNS)
    for col in ("open_date", "close_date"):
        df[col] = pd.to_datetime(df[col], utc=True)
    return df


def format_summary(result, params=None) -> str:
    """Backtest summary plus the trade history, one line per item."""
    stats = result.statistics
    lines: List[str] = ["===== BACKTEST RESULTS ====="]
    if params is not None:
        lines.append(f"Symbol: {params.symbol}, Interval: {params.interval}")
        lines.append(f"Period: {params.start_date} to {params.end_date}")

    lines += [
        f"Klines processed: {result.candles_processed}",
        f"Initial balance: {result.initial_balance:.2f} USDT",
        f"Final balance: {result.final_balance:.2f} USDT",
        f"Total profit: {result.total_profit:.2f} USDT",
        f"Return: {result.return_percent:.2f}%",
        f"Total trades: {stats.total_trades}",
    ]

    if stats.total_trades:
        lines += [
            f"Winning trades: {stats.winning_trades} ({stats.win_rate:.2f}%)",
            f"Profit factor: {stats.profit_factor:.2f}",
            f"Biggest win: {stats.biggest_win:.2f} / biggest loss: {stats.biggest_loss:.2f}",
            f"Average holding time: {stats.average_holding_time_hours:.2f} hours",
            "",
            "Trade history:",
        ]
        for i, trade in enumerate(result.trades, start=1):
            lines.append(
                f"{i}. {trade.symbol}: {trade.profit:.2f} USDT ({trade.profit_percent:.2f}%) - "
                f"{trade.open_date.date().isoformat()} to {trade.close_date.date().isoformat()} "
                f"[{trade.reason}]"
            )

    if result.open_positions:
        lines.append(f"Positions still open: {len(result.open_positions)}")
    return "\n".join(lines)
