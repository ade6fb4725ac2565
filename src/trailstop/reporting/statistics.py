# file: trailstop/reporting/statistics.py

"""
Trade statistics.

Reduces the closed-trade history of a backtest (or of a live session) to
the summary figures shown in the report. The reduction is pure: trades
are only read.
"""

from dataclasses import asdict, dataclass
from typing import Iterable

from trailstop.execution.order_model import ClosedTrade

MS_PER_HOUR = 1000 * 60 * 60


@dataclass(frozen=True)
class TradeStatistics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_profit: float = 0.0
    total_profit_percent: float = 0.0
    biggest_win: float = 0.0
    biggest_loss: float = 0.0
    average_profit: float = 0.0
    average_profit_percent: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    average_holding_time_ms: float = 0.0
    average_holding_time_hours: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_statistics(trades: Iterable[ClosedTrade]) -> TradeStatistics:
    """Summary metrics over closed trades.

    A trade with profit > 0 is a win, anything else (including break-even)
    is a loss. `profit_factor` is gross win / gross loss, or the gross win
    itself when there were no losses. All figures are 0 without trades.
    """
    trades = list(trades)
    total = len(trades)
    if total == 0:
        return TradeStatistics()

    winning = losing = 0
    total_profit = total_profit_percent = 0.0
    biggest_win = biggest_loss = 0.0
    total_win_amount = total_loss_amount = 0.0
    total_holding_ms = 0.0

    for trade in trades:
        total_profit += trade.profit
        total_profit_percent += trade.profit_percent
        total_holding_ms += trade.holding_time_ms

        if trade.profit > 0:
            winning += 1
            total_win_amount += trade.profit
            biggest_win = max(biggest_win, trade.profit)
        else:
            losing += 1
            total_loss_amount += abs(trade.profit)
            biggest_loss = min(biggest_loss, trade.profit)

    average_holding_ms = total_holding_ms / total
    return TradeStatistics(
        total_trades=total,
        winning_trades=winning,
        losing_trades=losing,
        total_profit=total_profit,
        total_profit_percent=total_profit_percent,
        biggest_win=biggest_win,
        biggest_loss=biggest_loss,
        average_profit=total_profit / total,
        average_profit_percent=total_profit_percent / total,
        win_rate=(winning / total) * 100,
        profit_factor=(
            total_win_amount / total_loss_amount if total_loss_amount > 0 else total_win_amount
        ),
        average_holding_time_ms=average_holding_ms,
        average_holding_time_hours=average_holding_ms / MS_PER_HOUR,
    )
