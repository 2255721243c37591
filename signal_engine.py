#!/usr/bin/env python3
"""
Signal Engine — Turns a time-ordered series of OHLC candles into ranked
BUY/SELL trade signals using RSI, MACD and EMA trend filters.

Pipeline: candles -> indicators -> aligned bars -> decision policy -> signal set.
Pure computation: no I/O, no shared state, never raises for list input.
"""

import json
import math
import sys
from decimal import Context, Decimal, ROUND_HALF_UP

import numpy as np
import pandas as pd

from market_data import DEFAULT_INSTRUMENT, get_signal_candles


class NumpyEncoder(json.JSONEncoder):
    """Handle numpy types in JSON serialization."""
    def default(self, obj):
        if isinstance(obj, (np.integer,)):
            return int(obj)
        if isinstance(obj, (np.floating,)):
            return float(obj)
        if isinstance(obj, (np.bool_,)):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


# ------------------------------------------------------------------
# Config
# ------------------------------------------------------------------
RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
EMA_FAST = 12
EMA_SLOW = 26

SCAN_WINDOW = 20      # most recent bars inspected, newest first
MAX_SIGNALS = 5
MIN_CANDLES = 30

BUY_RSI_THRESHOLD = 40
SELL_RSI_THRESHOLD = 60
BASE_CONFIDENCE = 75
CONFIDENCE_SCALE = 1.5

BUY_TARGET_MULT = 1.007
SELL_TARGET_MULT = 0.993
BUY_STOP_MULT = 0.996
SELL_STOP_MULT = 1.004

DEFAULT_TICKER = "NIFTY_FUT"

STATUS_OK = "ok"
STATUS_NO_SIGNAL = "no_signal"
STATUS_INSUFFICIENT_DATA = "insufficient_data"

# Wide enough to quantize any finite float to cents
_PRICE_CONTEXT = Context(prec=400)

BUY_REASONING = (
    "RSI at {rsi:.1f} suggests it's nearing oversold. A bullish MACD crossover "
    "combined with a positive EMA trend indicates potential upward momentum."
)
SELL_REASONING = (
    "RSI at {rsi:.1f} suggests it's nearing overbought. A bearish MACD crossover "
    "with a negative EMA trend indicates potential downward pressure."
)

DEFAULT_SIGNALS = [
    {
        "id": 1,
        "ticker": "BANKNIFTY_FUT",
        "signal": "BUY",
        "confidence": 85,
        "entryPrice": 48500.00,
        "targetPrice": 48800.00,
        "stopLoss": 48350.00,
        "reasoning": "Default signal: Strong market opening and positive global cues.",
    },
    {
        "id": 2,
        "ticker": "RELIANCE_FUT",
        "signal": "SELL",
        "confidence": 78,
        "entryPrice": 2900.00,
        "targetPrice": 2860.00,
        "stopLoss": 2920.00,
        "reasoning": "Default signal: Approaching a key resistance level with high volume.",
    },
]


# ============================================================
# TECHNICAL INDICATORS
# ============================================================
def compute_rsi(series, period=RSI_PERIOD):
    """
    Compute Wilder's RSI. The first `period` values are NaN; the average
    gain/loss is seeded with a simple mean and then smoothed.
    """
    rsi = pd.Series(np.nan, index=series.index, dtype=float)
    if len(series) <= period:
        return rsi

    delta = series.diff()
    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)
    avg_gain = gain.rolling(window=period, min_periods=period).mean()
    avg_loss = loss.rolling(window=period, min_periods=period).mean()
    for i in range(period + 1, len(series)):
        avg_gain.iloc[i] = (avg_gain.iloc[i-1] * (period - 1) + gain.iloc[i]) / period
        avg_loss.iloc[i] = (avg_loss.iloc[i-1] * (period - 1) + loss.iloc[i]) / period

    for i in range(period, len(series)):
        gain_i, loss_i = avg_gain.iloc[i], avg_loss.iloc[i]
        if loss_i == 0:
            rsi.iloc[i] = 100.0
        elif gain_i == 0:
            rsi.iloc[i] = 0.0
        else:
            rsi.iloc[i] = 100 - (100 / (1 + gain_i / loss_i))
    return rsi


def compute_ema(series, period):
    """EMA seeded with the simple average of the first `period` values."""
    ema = pd.Series(np.nan, index=series.index, dtype=float)
    valid = series.dropna()
    if len(valid) < period:
        return ema

    seeded = valid.iloc[period - 1:].astype(float).copy()
    seeded.iloc[0] = valid.iloc[:period].mean()
    ema.loc[seeded.index] = seeded.ewm(span=period, adjust=False).mean()
    return ema


def compute_macd(series, fast=MACD_FAST, slow=MACD_SLOW, signal_period=MACD_SIGNAL):
    """Compute MACD, Signal Line, and Histogram."""
    macd_line = compute_ema(series, fast) - compute_ema(series, slow)
    signal_line = compute_ema(macd_line, signal_period)
    histogram = macd_line - signal_line
    return macd_line, signal_line, histogram


def first_valid_position(series):
    """Absolute index of the first non-NaN value, or None."""
    idx = series.first_valid_index()
    if idx is None:
        return None
    return series.index.get_loc(idx)


def valid_values(series):
    """The indicator series without its warm-up padding."""
    start = first_valid_position(series)
    if start is None:
        return series.iloc[:0]
    return series.iloc[start:]


def compute_indicators(closes, rsi_period=RSI_PERIOD, ema_fast=EMA_FAST, ema_slow=EMA_SLOW,
                       macd_fast=MACD_FAST, macd_slow=MACD_SLOW, macd_signal=MACD_SIGNAL):
    """Compute every indicator the decision policy needs, once."""
    if not isinstance(closes, pd.Series):
        closes = pd.Series(list(closes), dtype=float)
    macd_line, signal_line, histogram = compute_macd(closes, macd_fast, macd_slow, macd_signal)
    return {
        "rsi": compute_rsi(closes, rsi_period),
        "macd_line": macd_line,
        "signal_line": signal_line,
        "histogram": histogram,
        "ema_fast": compute_ema(closes, ema_fast),
        "ema_slow": compute_ema(closes, ema_slow),
    }


# ============================================================
# CANDLE HYGIENE
# ============================================================
def _is_number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def clean_candles(candles):
    """Drop candles with a missing or non-finite OHLC field, keeping order."""
    cleaned = []
    dropped = 0
    for candle in candles or []:
        if not isinstance(candle, dict) or not all(
            _is_number(candle.get(k)) for k in ("open", "high", "low", "close")
        ):
            dropped += 1
            continue
        cleaned.append(candle)
    if dropped:
        print(f"  [WARN] Dropped {dropped} malformed candle(s) of {dropped + len(cleaned)}")
    return cleaned


# ============================================================
# INDEX ALIGNMENT
# ============================================================
def align_bars(candles, indicators, window=SCAN_WINDOW, min_candles=MIN_CANDLES):
    """
    Build AlignedBars for the last `window` candle positions, newest first.

    Every indicator series is indexed by absolute candle position. Each
    one's first valid index is computed once; the latest of them is the
    anchor, and positions before it are skipped rather than filled. A
    position with any missing value is skipped too, so a bar always
    carries a complete indicator tuple.
    """
    n = len(candles)
    if n < min_candles:
        return []

    starts = {name: first_valid_position(s) for name, s in indicators.items()}
    if any(start is None for start in starts.values()):
        return []
    anchor = max(starts.values())

    bars = []
    for pos in range(n - 1, max(n - 1 - window, -1), -1):
        if pos < anchor:
            continue
        values = {name: indicators[name].iloc[pos] for name in indicators}
        if any(pd.isna(v) for v in values.values()):
            continue
        bars.append({
            "index": pos,
            "candle": candles[pos],
            "rsi": float(values["rsi"]),
            "macd": {
                "macd_line": float(values["macd_line"]),
                "signal_line": float(values["signal_line"]),
                "histogram": float(values["histogram"]),
            },
            "ema_fast": float(values["ema_fast"]),
            "ema_slow": float(values["ema_slow"]),
        })
    return bars


# ============================================================
# DECISION POLICY
# ============================================================
def round_price(value):
    """Round half-up to 2 decimals."""
    return float(Decimal(repr(float(value))).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP, context=_PRICE_CONTEXT))


def price_levels(close, target_mult, stop_mult):
    """Rounded (entry, target, stop), or None when a level overflows."""
    close = float(close)
    levels = (close, close * target_mult, close * stop_mult)
    if not all(math.isfinite(p) for p in levels):
        return None
    return tuple(round_price(p) for p in levels)


def compute_confidence(distance, base=BASE_CONFIDENCE, scale=CONFIDENCE_SCALE):
    """floor(base + distance * scale), clamped to [0, 100]."""
    return max(0, min(100, int(math.floor(base + distance * scale))))


def evaluate_bar(bar, ticker=DEFAULT_TICKER, buy_rsi=BUY_RSI_THRESHOLD,
                 sell_rsi=SELL_RSI_THRESHOLD):
    """
    Apply the BUY/SELL rules to one AlignedBar.

    Returns a signal dict (without an id) or None when neither rule fires
    or the price levels cannot be represented.
    """
    rsi = bar["rsi"]
    macd = bar["macd"]
    bullish_cross = macd["macd_line"] > macd["signal_line"]
    bearish_cross = macd["macd_line"] < macd["signal_line"]

    if rsi < buy_rsi and bullish_cross and bar["ema_fast"] > bar["ema_slow"]:
        side, distance, reasoning = "BUY", buy_rsi - rsi, BUY_REASONING
        target_mult, stop_mult = BUY_TARGET_MULT, BUY_STOP_MULT
    elif rsi > sell_rsi and bearish_cross and bar["ema_fast"] < bar["ema_slow"]:
        side, distance, reasoning = "SELL", rsi - sell_rsi, SELL_REASONING
        target_mult, stop_mult = SELL_TARGET_MULT, SELL_STOP_MULT
    else:
        return None

    levels = price_levels(bar["candle"]["close"], target_mult, stop_mult)
    if levels is None:
        print(f"  [WARN] Skipping bar {bar.get('index')}: price levels overflow")
        return None
    entry, target, stop = levels
    return {
        "ticker": ticker,
        "signal": side,
        "confidence": compute_confidence(distance),
        "entryPrice": entry,
        "targetPrice": target,
        "stopLoss": stop,
        "reasoning": reasoning.format(rsi=rsi),
    }


# ============================================================
# SIGNAL SET ASSEMBLY
# ============================================================
def default_signals():
    """Fresh copy of the fallback signal set."""
    return [dict(s) for s in DEFAULT_SIGNALS]


def assemble_signals(bars, ticker=DEFAULT_TICKER, max_signals=MAX_SIGNALS, **policy):
    """Run the policy over bars (newest first), cap the count, number from 1."""
    signals = []
    for bar in bars:
        if len(signals) >= max_signals:
            break
        sig = evaluate_bar(bar, ticker, **policy)
        if sig is not None:
            signals.append({"id": len(signals) + 1, **sig})
    return signals


def evaluate_signals(candles, ticker=DEFAULT_TICKER, window=SCAN_WINDOW,
                     max_signals=MAX_SIGNALS, min_candles=MIN_CANDLES, **policy):
    """
    Tagged form of the engine result. Never substitutes the default set:

        {"status": "ok" | "no_signal" | "insufficient_data",
         "signals": [...], "bars_scanned": int, "candle_count": int}
    """
    candles = clean_candles(candles)
    result = {
        "status": STATUS_INSUFFICIENT_DATA,
        "signals": [],
        "bars_scanned": 0,
        "candle_count": len(candles),
    }
    if len(candles) < min_candles:
        return result

    indicators = compute_indicators([c["close"] for c in candles])
    bars = align_bars(candles, indicators, window=window, min_candles=min_candles)
    if not bars:
        return result

    signals = assemble_signals(bars, ticker, max_signals=max_signals, **policy)
    result["bars_scanned"] = len(bars)
    result["signals"] = signals
    result["status"] = STATUS_OK if signals else STATUS_NO_SIGNAL
    return result


def generate_trade_signals(candles, ticker=DEFAULT_TICKER, **kwargs):
    """
    Signals for display: falls back to the default set when nothing was
    found or the data was insufficient, so the result is never empty.
    """
    result = evaluate_signals(candles, ticker, **kwargs)
    if result["status"] != STATUS_OK:
        return default_signals()
    return result["signals"]


# ============================================================
# MAIN
# ============================================================
def run_engine(instrument=None, ticker=DEFAULT_TICKER, source=None):
    """Fetch candles for an instrument and print the resulting signal set."""
    instrument = instrument or DEFAULT_INSTRUMENT
    print(f"\n{'='*60}")
    print(f"Signal Engine Run — {instrument} ({ticker})")
    print(f"{'='*60}\n")

    candles = get_signal_candles(instrument, source=source) or []
    result = evaluate_signals(candles, ticker)
    print(f"  Candles: {result['candle_count']}, bars scanned: {result['bars_scanned']}, "
          f"status: {result['status']}")

    signals = result["signals"] if result["status"] == STATUS_OK else default_signals()
    if result["status"] != STATUS_OK:
        print("  [WARN] No live signals — showing default set")
    for s in signals:
        print(f"  #{s['id']} {s['ticker']} {s['signal']} @ {s['entryPrice']:.2f} "
              f"-> {s['targetPrice']:.2f} (SL {s['stopLoss']:.2f}), conf {s['confidence']}")
    return signals


if __name__ == "__main__":
    signals = run_engine(*sys.argv[1:2])
    print(json.dumps(signals, indent=2, cls=NumpyEncoder))
