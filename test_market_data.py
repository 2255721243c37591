#!/usr/bin/env python3
"""
Test the Yahoo data path with yfinance and the chart API replaced by
fakes: source fallback, error handling and timestamp conversion.
"""

import os
import sys
from unittest import mock

import pandas as pd

# Add parent dir to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import market_data
from market_data import (
    dataframe_to_candles, fetch_data, fetch_price_data_api, fetch_price_data_yfinance,
    get_historical_candles, get_quote, get_signal_candles,
)


def utc_millis(text):
    return int(pd.Timestamp(text, tz="UTC").timestamp() * 1000)


def ohlc_frame(index, closes):
    return pd.DataFrame({
        "Open": closes,
        "High": [c + 1 for c in closes],
        "Low": [c - 1 for c in closes],
        "Close": closes,
        "Volume": [1000] * len(closes),
    }, index=index)


class FakeTicker:
    """Stands in for yf.Ticker; records history() calls."""
    calls = []

    def __init__(self, frame=None, error=None):
        self.frame = frame
        self.error = error

    def __call__(self, ticker):
        self.ticker = ticker
        return self

    def history(self, period, interval):
        FakeTicker.calls.append((self.ticker, period, interval))
        if self.error:
            raise self.error
        return self.frame if self.frame is not None else pd.DataFrame()


class FakeResponse:
    def __init__(self, status_code=200, payload=None, error=None):
        self.status_code = status_code
        self.payload = payload
        self.error = error

    def json(self):
        if self.error:
            raise self.error
        return self.payload


def chart_payload(timestamps, closes):
    return {"chart": {"result": [{
        "timestamp": timestamps,
        "indicators": {"quote": [{
            "open": closes,
            "high": [c + 1 if c is not None else None for c in closes],
            "low": [c - 1 if c is not None else None for c in closes],
            "close": closes,
            "volume": [500] * len(closes),
        }]},
    }]}}


def test_yfinance_first():
    print("=" * 60)
    print("TEST 1: yfinance source")
    print("=" * 60)

    index = pd.DatetimeIndex(["2024-07-29 09:30", "2024-07-29 09:45"], tz="America/New_York")
    ticker = FakeTicker(ohlc_frame(index, [100.0, 101.0]))
    with mock.patch.object(market_data.yf, "Ticker", ticker), \
            mock.patch.object(market_data.requests, "get") as get:
        df = fetch_data("AAPL", period="5d", interval="15m")
        assert not get.called
    assert df.index.tz is None
    assert df.index[0] == pd.Timestamp("2024-07-29 13:30")
    candles = dataframe_to_candles(df)
    assert [c["timestamp"] for c in candles] == [
        utc_millis("2024-07-29 13:30"), utc_millis("2024-07-29 13:45")]
    print("  ✓ tz-aware yfinance index converted to UTC millis")


def test_tz_aware_frame_conversion():
    index = pd.DatetimeIndex(["2024-07-29 09:15", "2024-07-29 09:30"], tz="Asia/Kolkata")
    candles = dataframe_to_candles(ohlc_frame(index, [22450.5, 22465.2]))
    assert candles[0]["timestamp"] == utc_millis("2024-07-29 03:45")
    assert candles[1]["close"] == 22465.2


def test_yfinance_errors_return_none():
    with mock.patch.object(market_data.yf, "Ticker", FakeTicker()):
        assert fetch_price_data_yfinance("AAPL") is None
    with mock.patch.object(market_data.yf, "Ticker", FakeTicker(error=RuntimeError("rate limited"))):
        assert fetch_price_data_yfinance("AAPL") is None
    print("  ✓ Empty or failing yfinance gives None")


def test_chart_api_fallback():
    print("=" * 60)
    print("TEST 2: Chart API fallback")
    print("=" * 60)

    stamps = [1722245400, 1722246300, 1722247200]
    resp = FakeResponse(payload=chart_payload(stamps, [100.0, None, 102.0]))
    with mock.patch.object(market_data.yf, "Ticker", FakeTicker()), \
            mock.patch.object(market_data.requests, "get", return_value=resp) as get:
        df = fetch_data("^NSEI", period="1mo", interval="1d")
    assert get.call_count == 1
    assert get.call_args.kwargs["params"] == {"range": "1mo", "interval": "1d"}
    assert "^NSEI" in get.call_args.args[0]
    assert list(df["Close"]) == [100.0, 102.0]
    candles = dataframe_to_candles(df)
    assert [c["timestamp"] for c in candles] == [stamps[0] * 1000, stamps[2] * 1000]
    print("  ✓ yfinance empty -> chart API used, null closes dropped")


def test_chart_api_errors_return_none():
    cases = [
        FakeResponse(status_code=429),
        FakeResponse(status_code=500),
        FakeResponse(payload={"chart": {"result": None, "error": "Not Found"}}),
        FakeResponse(payload={"unexpected": True}),
        FakeResponse(error=ValueError("Expecting value")),
        FakeResponse(payload=chart_payload([1722245400], [None])),
    ]
    for resp in cases:
        with mock.patch.object(market_data.requests, "get", return_value=resp):
            assert fetch_price_data_api("BAD") is None

    with mock.patch.object(market_data.requests, "get",
                           side_effect=market_data.requests.ConnectionError("offline")):
        assert fetch_price_data_api("BAD") is None

    with mock.patch.object(market_data.yf, "Ticker", FakeTicker()), \
            mock.patch.object(market_data.requests, "get", return_value=FakeResponse(404)):
        assert fetch_data("BAD") is None
        assert get_signal_candles("BAD", source="yahoo") is None
        assert get_historical_candles("BAD", "1m", source="yahoo") is None
        assert get_quote("BAD", source="yahoo") is None
    print("  ✓ Non-200, malformed bodies and network errors give None")


def test_yahoo_source_dispatch():
    print("=" * 60)
    print("TEST 3: Yahoo source dispatch")
    print("=" * 60)

    FakeTicker.calls = []
    index = pd.DatetimeIndex(["2024-07-29 09:15", "2024-07-29 09:16"], tz="UTC")
    ticker = FakeTicker(ohlc_frame(index, [22500.123, 22504.456]))
    with mock.patch.object(market_data.yf, "Ticker", ticker):
        candles = get_signal_candles("^NSEI", source="yahoo")
        history = get_historical_candles("^NSEI", "1m", source="yahoo")
        quote = get_quote("^NSEI", source="yahoo")
    assert FakeTicker.calls == [
        ("^NSEI", market_data.SIGNAL_PERIOD, market_data.SIGNAL_INTERVAL),
        ("^NSEI", "1mo", "1d"),
        ("^NSEI", "1d", "1m"),
    ]
    assert len(candles) == 2 and len(history) == 2
    assert quote == {"last_price": 22504.46, "timestamp": utc_millis("2024-07-29 09:16")}
    print("  ✓ Periods and intervals per use, quote from the last bar")


if __name__ == "__main__":
    test_yfinance_first()
    test_tz_aware_frame_conversion()
    test_yfinance_errors_return_none()
    test_chart_api_fallback()
    test_chart_api_errors_return_none()
    test_yahoo_source_dispatch()

    print("=" * 60)
    print("  ALL MARKET DATA TESTS PASSED ✅")
    print("=" * 60)
