#!/usr/bin/env python3
"""
Market Data — Candle source for the signal engine and the dashboard charts.

Two sources, picked with MARKET_DATA_SOURCE:
- "yahoo": Yahoo Finance via yfinance, falling back to the chart API directly
- "mock":  a seedable random-walk generator (default, no network)
"""

import datetime
import os

import numpy as np
import pandas as pd
import requests
import yfinance as yf

# ------------------------------------------------------------------
# Config
# ------------------------------------------------------------------
DATA_SOURCE = os.environ.get("MARKET_DATA_SOURCE", "mock").lower()
DEFAULT_INSTRUMENT = os.environ.get("SIGNAL_INSTRUMENT", "^NSEI")  # NIFTY 50
REQUEST_TIMEOUT = 15

# Signal engine input: ~5 sessions of 15-minute bars
SIGNAL_PERIOD = "5d"
SIGNAL_INTERVAL = "15m"
MOCK_SIGNAL_CANDLES = 100
MOCK_START_PRICE = 22500

# timeRange -> (yfinance period, yfinance interval, mock bar count, mock minutes per bar)
TIME_RANGES = {
    "1d": ("1d", "15m", 26, 15),
    "7d": ("5d", "1d", 5, 24 * 60),
    "1m": ("1mo", "1d", 22, 24 * 60),
    "3m": ("3mo", "1d", 63, 24 * 60),
}
DEFAULT_TIME_RANGE = "1d"

_HEADERS = {"User-Agent": "Mozilla/5.0"}


# ============================================================
# DATA FETCHING
# ============================================================
def fetch_price_data_yfinance(ticker, period="6mo", interval="1d"):
    """Fetch historical price data using yfinance."""
    try:
        stock = yf.Ticker(ticker)
        df = stock.history(period=period, interval=interval)
        if df is None or df.empty:
            return None
        if df.index.tz is not None:
            df.index = df.index.tz_convert("UTC").tz_localize(None)
        return df
    except Exception as e:
        print(f"  [ERROR] {ticker}: {e}")
        return None


def fetch_price_data_api(ticker, period="6mo", interval="1d"):
    """Fetch data via Yahoo Finance API directly (fallback)."""
    try:
        url = f"https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"
        params = {"range": period, "interval": interval}
        resp = requests.get(url, params=params, headers=_HEADERS, timeout=REQUEST_TIMEOUT)
        if resp.status_code != 200:
            print(f"  [WARN] Yahoo chart API returned {resp.status_code} for {ticker}")
            return None
        result = resp.json()["chart"]["result"][0]
        quotes = result["indicators"]["quote"][0]
        df = pd.DataFrame({
            "Open": quotes["open"],
            "High": quotes["high"],
            "Low": quotes["low"],
            "Close": quotes["close"],
            "Volume": quotes["volume"]
        }, index=pd.to_datetime(result["timestamp"], unit="s"))
        df.dropna(subset=["Close"], inplace=True)
        if df.empty:
            return None
        return df
    except Exception as e:
        print(f"  [ERROR] {ticker}: {e}")
        return None


def fetch_data(ticker, period="6mo", interval="1d"):
    df = fetch_price_data_yfinance(ticker, period, interval)
    if df is None:
        df = fetch_price_data_api(ticker, period, interval)
    return df


# ============================================================
# CANDLES
# ============================================================
def dataframe_to_candles(df):
    """Convert an OHLC DataFrame (DatetimeIndex) to candle dicts, oldest first."""
    if df is None or df.empty:
        return []
    df = df.dropna(subset=["Close"]).sort_index()
    index = pd.DatetimeIndex(df.index)
    if index.tz is not None:
        index = index.tz_convert("UTC").tz_localize(None)
    millis = index.as_unit("ms").asi8.tolist()
    candles = []
    for ts, (_, row) in zip(millis, df.iterrows()):
        candles.append({
            "open": float(row["Open"]),
            "high": float(row["High"]),
            "low": float(row["Low"]),
            "close": float(row["Close"]),
            "timestamp": int(ts),
        })
    return candles


def generate_mock_candles(count, start_price=MOCK_START_PRICE, interval_minutes=15,
                          seed=None, end=None):
    """
    Generate a random-walk candle series ending at `end` (default: now).

    Each open sits within 10 points of the previous close, high/low extend
    up to 15 points beyond the body, and the close lands anywhere in the
    high-low range. Same seed and end, same candles.
    """
    rng = np.random.RandomState(seed)
    end = end or datetime.datetime.now(datetime.timezone.utc)
    timestamp = int(end.timestamp() * 1000)
    step = interval_minutes * 60 * 1000

    candles = []
    close = float(start_price)
    for _ in range(count):
        open_ = close + (rng.rand() - 0.5) * 20
        high = max(open_, close) + rng.rand() * 15
        low = min(open_, close) - rng.rand() * 15
        close = low + rng.rand() * (high - low)
        candles.append({"open": open_, "high": high, "low": low, "close": close})

    # Walk generated newest-first, stamp oldest-first
    candles.reverse()
    for i, candle in enumerate(candles):
        candle["timestamp"] = timestamp - (count - 1 - i) * step
    return candles


def get_signal_candles(instrument=DEFAULT_INSTRUMENT, source=None):
    """Candles the signal engine runs on. None when the source has no data."""
    source = (source or DATA_SOURCE).lower()
    if source == "mock":
        return generate_mock_candles(MOCK_SIGNAL_CANDLES)
    df = fetch_data(instrument, period=SIGNAL_PERIOD, interval=SIGNAL_INTERVAL)
    if df is None:
        return None
    return dataframe_to_candles(df)


def get_historical_candles(instrument=DEFAULT_INSTRUMENT, time_range=DEFAULT_TIME_RANGE,
                           source=None):
    """Candles for a performance chart time range ('1d', '7d', '1m', '3m')."""
    source = (source or DATA_SOURCE).lower()
    period, interval, mock_count, mock_minutes = TIME_RANGES.get(
        time_range, TIME_RANGES[DEFAULT_TIME_RANGE]
    )
    if source == "mock":
        return generate_mock_candles(mock_count, interval_minutes=mock_minutes)
    df = fetch_data(instrument, period=period, interval=interval)
    if df is None:
        return None
    return dataframe_to_candles(df)


def get_quote(instrument, source=None):
    """Latest traded price as {"last_price", "timestamp"}, or None."""
    source = (source or DATA_SOURCE).lower()
    if source == "mock":
        candles = generate_mock_candles(1)
    else:
        candles = dataframe_to_candles(fetch_data(instrument, period="1d", interval="1m"))
    if not candles:
        return None
    last = candles[-1]
    return {"last_price": round(last["close"], 2), "timestamp": last["timestamp"]}


def to_chart_series(candles):
    """Map candles to the {date, value} points the performance chart plots."""
    series = []
    for c in candles or []:
        date = datetime.datetime.fromtimestamp(c["timestamp"] / 1000, tz=datetime.timezone.utc)
        series.append({
            "date": date.isoformat().replace("+00:00", "Z"),
            "value": round(float(c["close"]), 2),
        })
    return series
