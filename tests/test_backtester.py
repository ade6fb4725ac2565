import unittest

from trailstop.config.config_loader import AppConfig
from trailstop.core.errors import ConfigurationError, DataUnavailableError
from trailstop.core.events import PositionClosed, PositionOpened, StopTriggered, StopUpdated
from trailstop.core.trailing import TrailingSettings
from trailstop.data.data_handler import HistoricalDataHandler, to_epoch_ms
from trailstop.data.klines import Candle
from trailstop.execution.order_model import PositionStatus
from trailstop.optimization.backtester import Backtester, BacktestState
from trailstop.reporting.report import format_summary, trades_frame

from fakes import HOUR_MS, FakeGateway, kline

START = "2024-01-01T00:00:00Z"
START_MS = to_epoch_ms(START)


def _candle(i, high, low, close, open_=None):
    return Candle.from_wire(kline(START_MS + i * HOUR_MS, open_ or close, high, low, close))


def _cfg(**overrides):
    data = {
        "symbol": "BTCUSDT",
        "backtest_params": {
            "symbol": "BTCUSDT",
            "interval": "1h",
            "start_date": START,
            "end_date": "2024-01-01T06:00:00Z",
        },
    }
    data.update(overrides)
    return AppConfig.from_dict(data)


class BacktesterTest(unittest.TestCase):
    def setUp(self):
        self.bt = Backtester(_cfg())

    def _rising(self):
        # closes 100, 101, 103, 102 with lows just under the close
        return [_candle(i, c, c - 0.5, c) for i, c in enumerate([100, 101, 103, 102])]

    def test_stop_ratchets_with_closes(self):
        pos = self.bt.open_position(100, 1)
        self.assertEqual(pos.current_trailing_stop, 98.0)

        result = self.bt.simulate(self._rising())

        self.assertEqual(pos.highest_price, 103.0)
        self.assertAlmostEqual(pos.current_trailing_stop, 101.455)
        self.assertEqual(result.trades, [])
        self.assertEqual(self.bt.state, BacktestState.DONE)

    def test_stop_trigger_closes_at_stop(self):
        pos = self.bt.open_position(100, 1)
        candles = self._rising() + [_candle(4, 104, 101.0, 103)]

        result = self.bt.simulate(candles)

        self.assertEqual(pos.status, PositionStatus.CLOSED)
        (trade,) = result.trades
        self.assertAlmostEqual(trade.exit_price, 101.455)
        self.assertEqual(trade.reason, "StopLoss")
        self.assertAlmostEqual(trade.profit, 1.455)
        # the triggering candle's high is never applied
        self.assertEqual(pos.highest_price, 103.0)
        self.assertEqual(trade.close_date, candles[-1].close_dt)
        self.assertEqual(trade.open_date, candles[0].open_dt)
        self.assertAlmostEqual(trade.holding_time_ms, 5 * HOUR_MS - 1, places=3)
        self.assertGreaterEqual(result.statistics.average_holding_time_hours, 0)
        self.assertAlmostEqual(result.final_balance, 10_001.455)
        self.assertEqual(result.open_positions, [])

    def test_seeded_positions_use_replay_time(self):
        pos = self.bt.open_position(100, 1)
        self.assertEqual(self.bt.events.of_type(PositionOpened), [])

        candles = [_candle(0, 100, 97, 99)]
        result = self.bt.simulate(candles)

        (opened,) = self.bt.events.of_type(PositionOpened)
        self.assertEqual(opened.time, candles[0].open_dt)
        self.assertEqual(pos.open_date, candles[0].open_dt)
        (trade,) = result.trades
        self.assertGreaterEqual(trade.holding_time_ms, 0)

        # opened after the replay: dated at the last kline close
        later = self.bt.open_position(99, 1)
        self.assertEqual(later.open_date, candles[0].close_dt)

    def test_low_touching_stop_triggers(self):
        pos = self.bt.open_position(100, 2)
        result = self.bt.simulate([_candle(0, 100, 98.0, 99)])
        self.assertTrue(pos.is_closed)
        self.assertAlmostEqual(result.trades[0].profit, -4.0)
        self.assertAlmostEqual(result.final_balance, 9_996.0)

    def test_positions_in_same_candle_are_independent(self):
        first = self.bt.open_position(100, 1)
        second = self.bt.open_position(90, 1)

        self.bt.simulate([_candle(0, 101, 95, 96)])

        self.assertTrue(first.is_closed)
        self.assertEqual(first.close_date, self.bt.trades[0].close_date)
        self.assertTrue(second.is_active)
        self.assertEqual(second.highest_price, 101.0)
        self.assertAlmostEqual(second.current_trailing_stop, 101 * 0.985)

    def test_events_are_recorded(self):
        self.bt.open_position(100, 1)
        self.bt.simulate(self._rising() + [_candle(4, 104, 101.0, 103)])

        events = self.bt.events
        self.assertEqual(len(events.of_type(PositionOpened)), 1)
        self.assertAlmostEqual([e.new_stop for e in events.of_type(StopUpdated)][-1], 103 * 0.985)
        (triggered,) = events.of_type(StopTriggered)
        self.assertEqual(triggered.low, 101.0)
        (closed,) = events.of_type(PositionClosed)
        self.assertEqual(closed.reason, "StopLoss")

    def test_open_positions_are_not_force_closed(self):
        self.bt.open_position(100, 1)
        result = self.bt.simulate(self._rising())

        (snapshot,) = result.open_positions
        self.assertEqual(snapshot["status"], "ACTIVE")
        self.assertEqual(result.final_balance, result.initial_balance)
        self.assertEqual(result.statistics.total_trades, 0)

    def test_per_position_settings(self):
        pos = self.bt.open_position(100, 1, settings=TrailingSettings(initial_stop_distance_percent=5))
        self.assertEqual(pos.current_trailing_stop, 95.0)
        self.assertEqual(pos.trailing_settings.trailing_distance_percent, 1.5)

    def test_config_settings_are_used(self):
        bt = Backtester(_cfg(trailing_stop={"initial_stop_distance_percent": 10}))
        self.assertEqual(bt.open_position(100, 1).current_trailing_stop, 90.0)

    def test_default_quantity_from_position_size(self):
        pos = self.bt.open_position(200)
        self.assertAlmostEqual(pos.quantity, 5.0)

    def test_out_of_order_klines(self):
        candles = self._rising()
        with self.assertRaises(ValueError):
            self.bt.simulate([candles[1], candles[0]])
        self.assertEqual(self.bt.state, BacktestState.FAILED)


class BacktestRunTest(unittest.TestCase):
    def _gateway(self, n=8):
        closes = [100, 101, 103, 102, 104, 99, 100, 101][:n]
        rows = [
            kline(START_MS + i * HOUR_MS, c, c + 0.5, c - 0.5, c) for i, c in enumerate(closes)
        ]
        return FakeGateway(klines=rows)

    def _loader(self, gateway):
        return HistoricalDataHandler(gateway, "BTCUSDT", "1h", sleep=lambda s: None)

    def test_run_loads_and_simulates(self):
        buy_first = lambda candle, index, bt: 1.0 if index == 0 else None
        bt = Backtester(_cfg(), loader=self._loader(self._gateway()), entry_rule=buy_first)

        result = bt.run()

        # the end date cuts the series after six klines
        self.assertEqual(result.candles_processed, 6)
        self.assertEqual(bt.state, BacktestState.DONE)
        (opened,) = result.events.of_type(PositionOpened)
        self.assertEqual(opened.entry_price, 100.0)
        self.assertEqual(opened.time, bt.historical_data[0].close_dt)
        # high of 103.5 -> stop 101.9475, hit by the next low of 101.5
        (trade,) = result.trades
        self.assertAlmostEqual(trade.exit_price, 103.5 * 0.985)
        self.assertEqual(result.statistics.winning_trades, 1)

        summary = format_summary(result, bt.params)
        self.assertTrue(summary.startswith("===== BACKTEST RESULTS ====="))
        self.assertIn("Total trades: 1", summary)
        self.assertEqual(len(trades_frame(result.trades)), 1)

    def test_run_builds_loader_from_gateway(self):
        gw = self._gateway()
        bt = Backtester(_cfg(), gateway=gw)
        bt.loader._sleep = lambda s: None
        self.assertEqual(bt.run().candles_processed, 6)
        self.assertEqual(gw.calls_named("get_historical_klines")[0][4], START_MS)

    def test_empty_data_fails(self):
        bt = Backtester(_cfg(), loader=self._loader(FakeGateway()))
        with self.assertRaises(DataUnavailableError):
            bt.run()
        self.assertEqual(bt.state, BacktestState.FAILED)

    def test_needs_a_data_source(self):
        bt = Backtester(_cfg())
        with self.assertRaises(ConfigurationError):
            bt.run()
        self.assertEqual(bt.state, BacktestState.FAILED)


if __name__ == "__main__":
    unittest.main()
