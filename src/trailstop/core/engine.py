# file: trailstop/core/engine.py

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from trailstop.config.config_loader import AppConfig, validate_config
from trailstop.core.errors import GatewayError
from trailstop.core.events import (
    EventLog,
    PositionClosed,
    PositionOpened,
    StopTriggered,
    StopUpdated,
    VolatilityUpdated,
)
from trailstop.core.scheduler import IntervalScheduler
from trailstop.core.trailing import initial_stop_price
from trailstop.data.volatility import VolatilityEstimator
from trailstop.exchange.gateway import BinanceGateway, ExchangeGateway
from trailstop.execution.order_model import ClosedTrade, Position, PositionStatus
from trailstop.execution.risk_manager import RiskManager
from trailstop.execution.serialization import position_to_dict
from trailstop.optimization.backtester import Backtester, BacktestResult
from trailstop.reporting.report import format_summary
from trailstop.reporting.statistics import TradeStatistics, compute_statistics
from trailstop.utils.logger import set_log_level, setup_logger

logger = setup_logger(__name__)

# stop-limit orders are placed slightly below the stop (SELL)
STOP_LIMIT_OFFSET = 0.995
SHUTDOWN_REASON = "Program shutdown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrailingProfitMaximizer:
    """
    Live/paper orchestrator:
    - opens positions with a market BUY and a protective stop-loss order
    - refresh_prices / update_volatility are ticks driven by an external scheduler
    - ratchets each stop upward and replaces the exchange stop order when it moves
    Every tick holds the position lock, so ticks never interleave on the list.
    """

    def __init__(
        self,
        cfg: AppConfig,
        gateway: ExchangeGateway,
        volatility: Optional[VolatilityEstimator] = None,
    ):
        validate_config(cfg)
        self.cfg = cfg
        self.gateway = gateway
        self.settings = cfg.trailing_stop.settings()
        self.volatility = volatility or VolatilityEstimator(
            gateway, period=cfg.trailing_stop.atr_period, interval=cfg.trailing_stop.atr_interval
        )
        self.risk = RiskManager(cfg)

        self.positions: List[Position] = []
        self.profit_history: List[ClosedTrade] = []
        self.events = EventLog()
        self._lock = threading.RLock()

        logger.info(f"Initializing TrailingProfitMaximizer in {cfg.trading_mode.upper()} mode.")

    @property
    def is_live(self) -> bool:
        return self.cfg.trading_mode == "live"

    # ========== POSITIONS ==========

    def create_new_position(self, symbol: str, quantity: float) -> Position:
        logger.info(f"Creating new position for {symbol} with quantity {quantity}")
        with self._lock:
            try:
                buy_order = self.gateway.create_market_order(symbol, "BUY", quantity)

                position = Position(
                    symbol=symbol,
                    entry_price=float(buy_order["price"]),
                    quantity=float(buy_order["executedQty"]),
                    open_order_id=buy_order["orderId"],
                )
                position.status = PositionStatus.ACTIVE

                stop_price = initial_stop_price(
                    position.entry_price, self.settings.initial_stop_distance_percent
                )
                position.set_initial_stop(stop_price)
                self.update_stop_order(position, stop_price)

                self.positions.append(position)
            except GatewayError:
                logger.error(f"Error creating new position for {symbol}", exc_info=True)
                raise

        logger.info(f"Position created for {symbol} at {position.entry_price} with stop at {stop_price}")
        self.events.append(
            PositionOpened(position.open_date, symbol, position.entry_price, position.quantity, stop_price)
        )
        return position

    def open_position_for_notional(self, symbol: str) -> Position:
        """Buys `position_size` worth of `symbol` at the current price."""
        price = float(self.gateway.get_price(symbol)["price"])
        return self.create_new_position(symbol, self.risk.get_position_size(price))

    def update_stop_order(self, position: Position, new_stop_price: float) -> Dict:
        # a failed cancel is not fatal: the replacement is attempted anyway
        if position.stop_order_id:
            try:
                self.gateway.cancel_order(position.symbol, position.stop_order_id)
                logger.debug(f"Cancelled old stop order {position.stop_order_id} for {position.symbol}")
            except GatewayError as e:
                logger.warning(f"Error cancelling old stop order for {position.symbol}: {e}")

        limit_price = new_stop_price * STOP_LIMIT_OFFSET
        try:
            stop_order = self.gateway.create_stop_loss_order(
                position.symbol, "SELL", position.quantity, new_stop_price, limit_price
            )
        except GatewayError:
            logger.error(f"Error creating new stop order for {position.symbol}", exc_info=True)
            raise

        position.stop_order_id = stop_order["orderId"]
        logger.info(f"Created new stop order {position.stop_order_id} for {position.symbol} at {new_stop_price}")
        return stop_order

    def close_position(self, position: Position, close_price: float, reason: str = "") -> Optional[ClosedTrade]:
        logger.info(f"Closing position for {position.symbol} at {close_price}. Reason: {reason}")
        with self._lock:
            if position.is_closed:
                logger.warning(f"Position for {position.symbol} is already closed.")
                return None

            # a triggered stop already sold on the exchange; paper mode never sends orders
            if self.is_live and "StopLoss" not in reason:
                self.gateway.create_market_order(position.symbol, "SELL", position.quantity)

            position.close(close_price, reason)
            trade = ClosedTrade.from_position(position, close_price, reason)
            self.profit_history.append(trade)
            self.risk.update_balance(trade.profit)

        logger.info(
            f"Position closed for {position.symbol}. "
            f"Profit: {trade.profit:.2f} ({trade.profit_percent:.2f}%)"
        )
        self.events.append(
            PositionClosed(trade.close_date, trade.symbol, trade.exit_price, trade.profit, trade.profit_percent, reason)
        )
        return trade

    def get_active_positions(self) -> List[Position]:
        with self._lock:
            return [p for p in self.positions if p.status == PositionStatus.ACTIVE]

    def get_statistics(self) -> TradeStatistics:
        with self._lock:
            return compute_statistics(self.profit_history)

    def snapshot(self) -> List[dict]:
        with self._lock:
            return [position_to_dict(p) for p in self.positions]

    # ========== TICKS ==========

    def refresh_prices(self) -> None:
        """Price tick: observe prices for active positions, then ratchet their stops."""
        with self._lock:
            for position in self.get_active_positions():
                price = float(self.gateway.get_price(position.symbol)["price"])
                position.observe_price(price)
                logger.debug(
                    f"Updated {position.symbol}: Current price {price}, "
                    f"Profit: {position.profit:.2f} ({position.profit_percent:.2f}%)"
                )

                # paper stops live only here, so they are checked here
                if not self.is_live and 0 < price <= position.current_trailing_stop:
                    stop = position.current_trailing_stop
                    self.events.append(StopTriggered(_utcnow(), position.symbol, stop, price))
                    self._cancel_stop_order(position)
                    self.close_position(position, stop, "StopLoss (paper)")

            self.update_trailing_stops()

    def update_trailing_stops(self) -> None:
        with self._lock:
            for position in self.get_active_positions():
                old_stop = position.current_trailing_stop
                new_stop = position.update_trailing_stop(
                    defaults=self.settings, atr_distance=self._atr_distance(position.symbol)
                )

                if new_stop != old_stop and position.stop_order_id:
                    logger.info(f"Updating trailing stop for {position.symbol} from {old_stop} to {new_stop}")
                    self.update_stop_order(position, new_stop)
                    self.events.append(
                        StopUpdated(_utcnow(), position.symbol, old_stop, new_stop, position.stop_order_id)
                    )

    def update_volatility(self) -> Dict[str, float]:
        """Volatility tick: refresh ATR for every symbol with an active position."""
        with self._lock:
            symbols = [p.symbol for p in self.get_active_positions()]
        updated = self.volatility.update(symbols)
        for symbol, atr in updated.items():
            self.events.append(VolatilityUpdated(_utcnow(), symbol, atr))
        return updated

    def _atr_distance(self, symbol: str) -> Optional[float]:
        multiplier = self.cfg.trailing_stop.atr_multiplier
        if multiplier <= 0:
            return None
        atr = self.volatility.get(symbol)
        if atr is None:
            return None
        return atr * multiplier

    def _cancel_stop_order(self, position: Position) -> None:
        if not position.stop_order_id:
            return
        try:
            self.gateway.cancel_order(position.symbol, position.stop_order_id)
        except GatewayError as e:
            logger.warning(f"Error cancelling stop order for {position.symbol}: {e}")

    # ========== LIFECYCLE ==========

    def schedule(self, scheduler: IntervalScheduler) -> IntervalScheduler:
        scheduler.add_job("refresh_prices", self.cfg.refresh_interval / 1000, self.refresh_prices)
        scheduler.add_job("update_volatility", self.cfg.volatility_update_interval / 1000, self.update_volatility)
        return scheduler

    def shutdown(self, close_positions: bool = False) -> List[ClosedTrade]:
        closed: List[ClosedTrade] = []
        if not close_positions:
            return closed

        logger.info("Closing all positions before exit...")
        for position in self.get_active_positions():
            try:
                price = float(self.gateway.get_price(position.symbol)["price"])
                self._cancel_stop_order(position)
                trade = self.close_position(position, price, SHUTDOWN_REASON)
                if trade is not None:
                    closed.append(trade)
            except GatewayError:
                logger.error(f"Error closing position {position.symbol}", exc_info=True)
        return closed


def run_backtest(cfg: AppConfig, gateway: Optional[ExchangeGateway] = None) -> BacktestResult:
    set_log_level(cfg.log_level)
    gateway = gateway or BinanceGateway.from_config(cfg)

    backtester = Backtester(cfg, gateway=gateway)
    result = backtester.run()

    for line in format_summary(result, cfg.backtest_params).splitlines():
        logger.info(line)
    return result


def run_live(cfg: AppConfig, gateway: Optional[ExchangeGateway] = None) -> TrailingProfitMaximizer:
    set_log_level(cfg.log_level)
    logger.info(f"Starting TrailStop in {cfg.trading_mode.upper()} trading for {cfg.symbol}")

    gateway = gateway or BinanceGateway.from_config(cfg)
    if hasattr(gateway, "test_connection"):
        gateway.test_connection()
        logger.info("Binance API connection successful.")

    bot = TrailingProfitMaximizer(cfg, gateway)
    scheduler = bot.schedule(IntervalScheduler())
    scheduler.start()

    if cfg.open_position_on_start:
        try:
            bot.open_position_for_notional(cfg.symbol)
        except GatewayError:
            logger.error(f"Error opening position for {cfg.symbol}", exc_info=True)

    try:
        while not scheduler.wait(timeout=1.0):
            for event in bot.events.drain():
                logger.info(f"[EVENT] {event.to_json()}")
    except KeyboardInterrupt:
        logger.info("Shutting down TrailStop...")
    finally:
        scheduler.stop()
        bot.shutdown(close_positions=cfg.close_on_exit)
        for event in bot.events.drain():
            logger.info(f"[EVENT] {event.to_json()}")
    return bot
