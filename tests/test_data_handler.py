import unittest

import pandas as pd

from trailstop.core.errors import DataUnavailableError, UnsupportedIntervalError
from trailstop.data.data_handler import HistoricalDataHandler, interval_to_ms, to_epoch_ms
from trailstop.data.klines import Candle

from fakes import HOUR_MS, FakeGateway, kline


class _OverlappingGateway(FakeGateway):
    """Every page after the first repeats the previous page's last kline with a different close."""

    def get_historical_klines(self, symbol, interval, limit, start_time=None, end_time=None):
        self.calls.append(("get_historical_klines", symbol, interval, limit, start_time, end_time))
        rows = [r for r in self.klines if start_time - HOUR_MS <= r[0] <= end_time][:limit]
        if rows and rows[0][0] < start_time:
            rows[0] = list(rows[0])
            rows[0][4] = "999"
        return rows


def _series(n, start=0):
    return [kline(start + i * HOUR_MS, 100 + i, 101 + i, 99 + i, 100.5 + i) for i in range(n)]


class IntervalTest(unittest.TestCase):
    def test_units(self):
        self.assertEqual(interval_to_ms("1m"), 60_000)
        self.assertEqual(interval_to_ms("15m"), 900_000)
        self.assertEqual(interval_to_ms("4h"), 4 * 3_600_000)
        self.assertEqual(interval_to_ms("1d"), 86_400_000)
        self.assertEqual(interval_to_ms("1w"), 604_800_000)

    def test_unsupported(self):
        for bad in ("1M", "3s", "h", "xh", ""):
            with self.assertRaises(UnsupportedIntervalError):
                interval_to_ms(bad)

    def test_epoch_conversion(self):
        self.assertEqual(to_epoch_ms("1970-01-01T00:00:01Z"), 1000)
        self.assertEqual(to_epoch_ms("1970-01-01 00:00:02"), 2000)
        self.assertEqual(to_epoch_ms(12345), 12345)


class HistoricalDataHandlerTest(unittest.TestCase):
    def setUp(self):
        self.sleeps = []

    def _handler(self, gateway, page_size=3, interval="1h"):
        return HistoricalDataHandler(
            gateway, "BTCUSDT", interval, page_size=page_size, sleep=self.sleeps.append
        )

    def test_pages_are_chained_and_paced(self):
        gw = FakeGateway(klines=_series(10))
        candles = self._handler(gw).load(0, 10 * HOUR_MS - 1)

        self.assertEqual([c.open_time for c in candles], [i * HOUR_MS for i in range(10)])
        calls = gw.calls_named("get_historical_klines")
        self.assertEqual(len(calls), 4)
        # window end = start + (page_size - 1) * step
        self.assertEqual(calls[0][4:], (0, 2 * HOUR_MS))
        self.assertEqual(calls[1][4], 3 * HOUR_MS)
        # last window is clipped to the requested end
        self.assertEqual(calls[-1][5], 10 * HOUR_MS - 1)
        self.assertEqual(self.sleeps, [0.3] * 3)

    def test_overlapping_pages_are_deduplicated_first_wins(self):
        gw = _OverlappingGateway(klines=_series(10))
        candles = self._handler(gw).load(0, 10 * HOUR_MS - 1)

        times = [c.open_time for c in candles]
        self.assertEqual(times, sorted(set(times)))
        self.assertEqual(len(times), 10)
        self.assertNotIn(999.0, [c.close for c in candles])

    def test_unsorted_page_is_sorted(self):
        rows = _series(4)
        gw = FakeGateway()

        def once(*args, **kwargs):
            gw.calls.append(("get_historical_klines",))
            return [rows[2], rows[0], rows[3], rows[1]] if len(gw.calls) == 1 else []

        gw.get_historical_klines = once
        candles = self._handler(gw, page_size=10).load(0, 4 * HOUR_MS - 1)
        self.assertEqual([c.open_time for c in candles], [0, HOUR_MS, 2 * HOUR_MS, 3 * HOUR_MS])

    def test_filters_to_requested_range(self):
        gw = FakeGateway(klines=_series(6))
        # klines that close after the end are dropped
        candles = self._handler(gw, page_size=10).load(HOUR_MS, 4 * HOUR_MS)
        self.assertEqual([c.open_time for c in candles], [HOUR_MS, 2 * HOUR_MS, 3 * HOUR_MS])

    def test_stops_on_empty_page(self):
        gw = FakeGateway(klines=_series(2))
        candles = self._handler(gw, page_size=2).load(0, 10 * HOUR_MS - 1)
        self.assertEqual(len(candles), 2)
        self.assertEqual(len(gw.calls_named("get_historical_klines")), 2)

    def test_no_data_raises(self):
        with self.assertRaises(DataUnavailableError):
            self._handler(FakeGateway()).load(0, 10 * HOUR_MS)

    def test_unsupported_interval_fails_before_fetching(self):
        gw = FakeGateway(klines=_series(3))
        with self.assertRaises(UnsupportedIntervalError):
            self._handler(gw, interval="1M").load(0, 10 * HOUR_MS)
        self.assertEqual(gw.calls, [])

    def test_candles_are_parsed(self):
        gw = FakeGateway(klines=_series(1))
        (candle,) = self._handler(gw).load(0, HOUR_MS - 1)
        self.assertIsInstance(candle, Candle)
        self.assertEqual(candle.open, 100.0)
        self.assertEqual(candle.close_time, HOUR_MS - 1)
        self.assertEqual(candle.trade_count, 10)

    def test_get_ohlcv_frame(self):
        gw = FakeGateway(klines=_series(3))
        df = self._handler(gw).get_ohlcv(0, 3 * HOUR_MS - 1)
        self.assertEqual(list(df.columns), ["open", "high", "low", "close", "volume"])
        self.assertIsInstance(df.index, pd.DatetimeIndex)
        self.assertEqual(len(df), 3)


if __name__ == "__main__":
    unittest.main()
