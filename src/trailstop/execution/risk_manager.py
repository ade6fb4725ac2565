# file: trailstop/execution/risk_manager.py

from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)


class RiskManager:
    """
    Position sizing and account balance.
    Works both in the backtest and in live/paper mode.
    """

    def __init__(self, cfg):
        self.cfg = cfg

        # initial balance / equity, quote currency (USDT)
        self.initial_balance = cfg.initial_balance
        self.current_balance = cfg.initial_balance

        # notional per position, quote currency
        self.position_size = cfg.position_size

    def get_position_size(self, price: float) -> float:
        """
        Base-asset quantity worth `position_size` at `price`.
        """
        if price <= 0:
            raise ValueError(f"Price must be positive, got {price}")
        size = self.position_size / price

        logger.debug(f"Position size computed: {size}")
        return size

    def update_balance(self, pnl: float):
        """
        Applies a closed trade's profit to the balance.
        """
        self.current_balance += pnl
        logger.info(f"Balance updated: {self.current_balance:.2f}")
        return self.current_balance
