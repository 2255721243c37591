#!/usr/bin/env python3
"""
Signals API — Flask backend for the trading dashboard.
Serves rule-based trade signals, performance chart series and live quotes,
all built on signal_engine.py and market_data.py.
"""

import datetime
import json
import os
import traceback
from flask import Flask, jsonify, request
from flask_cors import CORS

from market_data import (
    DATA_SOURCE,
    DEFAULT_INSTRUMENT,
    DEFAULT_TIME_RANGE,
    get_historical_candles,
    get_quote,
    get_signal_candles,
    to_chart_series,
)
from signal_cache import SignalCache, cache_key
from signal_engine import (
    SCAN_WINDOW,
    STATUS_OK,
    NumpyEncoder,
    default_signals,
    evaluate_signals,
)

SIGNAL_TICKER = os.environ.get("SIGNAL_TICKER", "NIFTY_FUT")
MAX_SYMBOL_LEN = 20


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------
def _json_response(app, payload, status=200):
    return app.response_class(
        response=json.dumps(payload, cls=NumpyEncoder),
        status=status,
        mimetype="application/json",
    )


def _truthy(value):
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _valid_symbol(symbol):
    return bool(symbol) and len(symbol) <= MAX_SYMBOL_LEN


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------
def create_app(cache=None, candle_source=None, history_source=None, quote_source=None):
    """
    Build the Flask app. Collaborators default to the configured market
    data source and a fresh SignalCache; tests pass their own.
    """
    app = Flask(__name__)
    CORS(app)

    cache = cache if cache is not None else SignalCache()
    candle_source = candle_source or get_signal_candles
    history_source = history_source or get_historical_candles
    quote_source = quote_source or get_quote
    app.config["SIGNAL_CACHE"] = cache

    @app.route("/api/signals")
    def signals():
        """Trade signals for an instrument. ?strict=1 returns the tagged result."""
        ticker = request.args.get("ticker", SIGNAL_TICKER).upper().strip()
        instrument = request.args.get("instrument", DEFAULT_INSTRUMENT).strip()
        strict = _truthy(request.args.get("strict"))
        if not _valid_symbol(ticker) or not _valid_symbol(instrument):
            return jsonify({"message": "Invalid ticker or instrument"}), 400

        def compute():
            candles = candle_source(instrument)
            if candles is None:
                return None
            return evaluate_signals(candles, ticker)

        try:
            result = cache.get_or_compute(cache_key(instrument, ticker, SCAN_WINDOW), compute)
            if result is None:
                return jsonify({"message": f"No market data found for '{instrument}'"}), 404

            if strict:
                return _json_response(app, result)
            if result["status"] != STATUS_OK:
                return _json_response(app, default_signals())
            return _json_response(app, result["signals"])
        except Exception as e:
            print(f"  [ERROR] Error generating signals for {instrument}: {e}")
            traceback.print_exc()
            return jsonify({"message": "Error generating signals"}), 500

    @app.route("/api/performance")
    def performance():
        """Close-price series for the performance chart."""
        time_range = request.args.get("timeRange", DEFAULT_TIME_RANGE)
        instrument = request.args.get("instrument", DEFAULT_INSTRUMENT).strip()
        try:
            candles = history_source(instrument, time_range)
            if candles is None:
                return jsonify({"message": f"No market data found for '{instrument}'"}), 404
            return _json_response(app, to_chart_series(candles))
        except Exception as e:
            print(f"  [ERROR] Error fetching performance data: {e}")
            return jsonify({"message": "Error fetching performance data"}), 500

    @app.route("/api/quote")
    def quote():
        """Latest price as a single chart point."""
        instrument = (request.args.get("instrument") or "").strip()
        if not instrument:
            return jsonify({"message": "Instrument query parameter is required"}), 400
        try:
            q = quote_source(instrument)
            if not q or not q.get("last_price"):
                return jsonify({"message": "Could not fetch quote"}), 404
            return _json_response(app, {
                "date": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                "value": q["last_price"],
            })
        except Exception as e:
            print(f"  [ERROR] Error fetching quote: {e}")
            return jsonify({"message": "Error fetching quote"}), 500

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok", "data_source": DATA_SOURCE, "cached": len(cache)})

    return app


app = create_app()


# ------------------------------------------------------------------
# Main
# ------------------------------------------------------------------
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5002))

    print(f"\n{'='*60}")
    print("  Trading Signal Dashboard API")
    print("=" * 60)
    print(f"  Data source:   {DATA_SOURCE}")
    print(f"  Signals:       http://localhost:{port}/api/signals")
    print(f"  Performance:   http://localhost:{port}/api/performance?timeRange=1d")
    print(f"  Quote:         http://localhost:{port}/api/quote?instrument=<SYMBOL>")
    print(f"  Cache TTL:     {app.config['SIGNAL_CACHE'].ttl}s")
    print("=" * 60 + "\n")
    app.run(host="0.0.0.0", port=port, debug=False)
