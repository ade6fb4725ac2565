# file: trailstop/optimization/backtester.py

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence

from trailstop.config.config_loader import AppConfig
from trailstop.core.errors import ConfigurationError
from trailstop.core.events import (
    EventLog,
    PositionClosed,
    PositionOpened,
    StopTriggered,
    StopUpdated,
)
from trailstop.core.trailing import TrailingSettings
from trailstop.data.data_handler import HistoricalDataHandler
from trailstop.data.klines import Candle
from trailstop.exchange.gateway import ExchangeGateway
from trailstop.execution.order_model import ClosedTrade, Position, PositionStatus
from trailstop.execution.risk_manager import RiskManager
from trailstop.execution.serialization import position_to_dict
from trailstop.reporting.statistics import TradeStatistics, compute_statistics
from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)

STOP_LOSS_REASON = "StopLoss"

# (candle, index, backtester) -> quantity to buy at candle.close, or None
EntryRule = Callable[[Candle, int, "Backtester"], Optional[float]]


class BacktestState(str, Enum):
    INITIALIZED = "INITIALIZED"
    LOADING = "LOADING"
    SIMULATING = "SIMULATING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class BacktestResult:
    initial_balance: float
    final_balance: float
    trades: List[ClosedTrade]
    statistics: TradeStatistics
    events: EventLog
    open_positions: List[dict] = field(default_factory=list)
    candles_processed: int = 0

    @property
    def total_profit(self) -> float:
        return self.final_balance - self.initial_balance

    @property
    def return_percent(self) -> float:
        if not self.initial_balance:
            return 0.0
        return (self.final_balance / self.initial_balance - 1) * 100


class Backtester:
    """
    Replays historical klines against trailing-stop positions.

    Each candle is fully processed before the next one:
      1. active positions take the close as current price
      2. a low at or below the stop closes the position at the stop
      3. surviving positions raise their high to the candle high
      4. one trailing-stop pass over every active position
      5. the optional entry rule may open a new position at the close
    Positions still open at the end are left as they are.
    """

    def __init__(
        self,
        cfg: AppConfig,
        gateway: Optional[ExchangeGateway] = None,
        loader: Optional[HistoricalDataHandler] = None,
        entry_rule: Optional[EntryRule] = None,
    ):
        if cfg.backtest_params is None:
            raise ConfigurationError("Backtest parameters are missing in the configuration.")

        self.cfg = cfg
        self.params = cfg.backtest_params
        self.settings: TrailingSettings = cfg.trailing_stop.settings()
        self.entry_rule = entry_rule
        self.risk = RiskManager(cfg)

        if loader is None and gateway is not None:
            loader = HistoricalDataHandler(gateway, self.params.symbol, self.params.interval)
        self.loader = loader

        self.state = BacktestState.INITIALIZED
        self.positions: List[Position] = []
        self.trades: List[ClosedTrade] = []
        self.events = EventLog()
        self.historical_data: List[Candle] = []
        # replay time: close of the last processed kline
        self._clock: Optional[datetime] = None
        # positions seeded before any kline was replayed
        self._unstamped: List[Position] = []

        logger.info("Backtester initialized.")

    def run(self) -> BacktestResult:
        logger.info("Starting backtest run...")
        try:
            self.state = BacktestState.LOADING
            if self.loader is None:
                raise ConfigurationError("Backtester needs a gateway or a loader to fetch klines.")
            self.historical_data = self.loader.load(self.params.start_date, self.params.end_date)
            return self.simulate(self.historical_data)
        except Exception:
            self.state = BacktestState.FAILED
            logger.error("Backtest run failed.", exc_info=True)
            raise

    def simulate(self, candles: Sequence[Candle]) -> BacktestResult:
        self.state = BacktestState.SIMULATING
        logger.info(
            f"Starting simulation loop over {len(candles)} klines "
            f"with initial balance {self.risk.initial_balance:.2f}"
        )
        try:
            if candles and self._unstamped:
                self._stamp_seeded(candles[0].open_dt)

            previous_open = None
            for i, candle in enumerate(candles):
                if previous_open is not None and candle.open_time <= previous_open:
                    raise ValueError(
                        f"Klines out of order at index {i}: {candle.open_time} <= {previous_open}"
                    )
                previous_open = candle.open_time
                self.process_candle(candle, i)
        except Exception:
            self.state = BacktestState.FAILED
            raise

        result = self._result(len(candles))
        self.state = BacktestState.DONE
        logger.info(
            f"Backtest run finished. Trades: {result.statistics.total_trades}, "
            f"final balance: {result.final_balance:.2f}"
        )
        return result

    # ========== PER-CANDLE STEP ==========

    def process_candle(self, candle: Candle, index: int = 0) -> None:
        logger.debug(
            f"Processing kline {index + 1}: {candle.open_dt.isoformat()} "
            f"O={candle.open} H={candle.high} L={candle.low} C={candle.close}"
        )
        candle_time = candle.close_dt if candle.close_time else candle.open_dt
        self._clock = candle_time

        for position in self.get_active_positions():
            position.current_price = candle.close
            position.update_profit()

            stop = position.current_trailing_stop
            if stop > 0 and candle.low <= stop:
                logger.info(
                    f"Stop triggered for {position.symbol} at kline {index + 1}. "
                    f"Low ({candle.low}) <= Stop ({stop})."
                )
                self.events.append(StopTriggered(candle_time, position.symbol, stop, candle.low))
                self._close(position, stop, STOP_LOSS_REASON, candle_time)
                continue

            if candle.high > position.highest_price:
                position.highest_price = candle.high
                logger.debug(f"New highest price for {position.symbol}: {candle.high}")

        # single pass after every position saw this candle
        self.update_trailing_stops(candle_time)

        if self.entry_rule is not None:
            quantity = self.entry_rule(candle, index, self)
            if quantity:
                self.open_position(candle.close, quantity, candle_time)

    def update_trailing_stops(self, when: datetime) -> None:
        for position in self.get_active_positions():
            old_stop = position.current_trailing_stop
            new_stop = position.update_trailing_stop(defaults=self.settings)
            if new_stop != old_stop:
                self.events.append(StopUpdated(when, position.symbol, old_stop, new_stop))
                logger.debug(f"Stop updated for {position.symbol}: {old_stop} -> {new_stop}")

    # ========== POSITIONS ==========

    def open_position(
        self,
        entry_price: float,
        quantity: Optional[float] = None,
        opened_at: Optional[datetime] = None,
        settings: Optional[TrailingSettings] = None,
    ) -> Position:
        """
        Seeds an ACTIVE position; its initial stop comes from the first ratchet step.
        Without `opened_at` it is dated at the replay clock, or at the first
        replayed kline's open when seeded before the replay starts.
        """
        if quantity is None:
            quantity = self.risk.get_position_size(entry_price)

        if opened_at is None:
            opened_at = self._clock

        kwargs = {"open_date": opened_at} if opened_at is not None else {}
        position = Position(symbol=self.params.symbol, entry_price=entry_price, quantity=quantity, **kwargs)
        if settings is not None:
            position.trailing_settings = settings
        position.status = PositionStatus.ACTIVE
        position.update_trailing_stop(defaults=self.settings)

        self.positions.append(position)
        if opened_at is None:
            self._unstamped.append(position)
        else:
            self._announce(position)
        logger.info(
            f"Simulated position opened: {position.symbol} @ {position.entry_price} "
            f"qty={position.quantity} stop={position.current_trailing_stop}"
        )
        return position

    def get_active_positions(self) -> List[Position]:
        return [p for p in self.positions if p.status == PositionStatus.ACTIVE]

    def _stamp_seeded(self, when: datetime) -> None:
        """Dates positions seeded before the replay with the first kline's open."""
        for position in self._unstamped:
            position.open_date = when
            self._announce(position)
        self._unstamped.clear()

    def _announce(self, position: Position) -> None:
        self.events.append(
            PositionOpened(
                position.open_date,
                position.symbol,
                position.entry_price,
                position.quantity,
                position.current_trailing_stop,
            )
        )

    def _close(self, position: Position, price: float, reason: str, when: datetime) -> ClosedTrade:
        position.close(price, reason, closed_at=when)
        trade = ClosedTrade.from_position(position, price, reason)
        self.trades.append(trade)
        self.risk.update_balance(trade.profit)
        self.events.append(
            PositionClosed(when, trade.symbol, trade.exit_price, trade.profit, trade.profit_percent, reason)
        )
        logger.info(f"Simulated position closed: {trade.symbol}, profit: {trade.profit:.2f}")
        return trade

    def _result(self, candles_processed: int) -> BacktestResult:
        total_profit = sum(t.profit for t in self.trades)
        return BacktestResult(
            initial_balance=self.risk.initial_balance,
            final_balance=self.risk.initial_balance + total_profit,
            trades=list(self.trades),
            statistics=compute_statistics(self.trades),
            events=self.events,
            open_positions=[position_to_dict(p) for p in self.get_active_positions()],
            candles_processed=candles_processed,
        )
