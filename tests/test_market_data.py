from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stock_journal.config.app_config import CacheSettings, MarketDataSettings
from stock_journal.errors import MarketDataError
from stock_journal.pricing.market_data import MarketDataClient, _parse_timestamp

CACHE = CacheSettings(
    ohlcv_max_entries=5,
    ohlcv_ttl_seconds=3600,
    trade_details_max_entries=5,
    trade_details_ttl_seconds=60,
    quote_max_entries=5,
    quote_ttl_seconds=60,
)
START = datetime(2024, 1, 2, tzinfo=timezone.utc)
END = datetime(2024, 2, 1, tzinfo=timezone.utc)


def _client(script_url: str = "https://quotes.example/exec") -> MarketDataClient:
    settings = MarketDataSettings(relay_url="https://relay.example/ohlcv", script_url=script_url, timeout_seconds=5)
    return MarketDataClient(settings, CACHE)


def test_batch_quotes_post_once_and_cache(monkeypatch):
    client = _client()
    requests = []

    def fake_post(url, body, *, content_type="application/json"):
        requests.append((url, body, content_type))
        return {"prices": {"AAPL": "181.5", "MSFT": 410}, "timestamp": "2024-03-15T15:59:00Z"}

    monkeypatch.setattr(client, "_post_json", fake_post)
    quotes = client.get_batch_quotes("user-1", ["aapl", "msft", "AAPL"])
    assert quotes["AAPL"].price == 181.5
    assert quotes["MSFT"].price == 410.0
    assert requests[0][1] == {"type": "market_data", "userId": "user-1", "tickers": ["AAPL", "MSFT"]}
    assert requests[0][2].startswith("text/plain")

    again = client.get_batch_quotes("user-1", ["AAPL"])
    assert again["AAPL"].price == 181.5
    assert len(requests) == 1


def test_error_payload_raises(monkeypatch):
    client = _client()
    monkeypatch.setattr(client, "_post_json", lambda *args, **kwargs: {"error": "quota exceeded"})
    with pytest.raises(MarketDataError, match="quota exceeded"):
        client.get_batch_quotes("user-1", ["AAPL"])
    assert client.get_quote("user-1", "AAPL") is None


def test_unconfigured_quote_endpoint_raises():
    with pytest.raises(MarketDataError):
        _client(script_url="").get_batch_quotes("user-1", ["AAPL"])


def test_fetch_high_low_from_bars(monkeypatch):
    client = _client()
    calls = []
    urls = []

    def fake_post(url, body, *, content_type="application/json"):
        urls.append(url)
        calls.append(body)
        return {
            "data": [
                {"timestamp": 1704240000000, "open": 10, "high": 12, "low": 9, "close": 11, "volume": 100},
                {"timestamp": "2024-01-03T00:00:00Z", "open": 11, "high": 15, "low": 10.5, "close": 14},
                {"timestamp": None, "open": 1, "high": 100, "low": 0.1, "close": 1},
            ]
        }

    monkeypatch.setattr(client, "_post_json", fake_post)
    assert client.fetch_high_low("aapl", START, END) == (9.0, 15.0)
    assert urls == ["https://relay.example/ohlcv"]
    assert calls[0] == {"ticker": "AAPL", "startDate": "2024-01-02T00:00:00Z", "endDate": "2024-02-01T00:00:00Z"}
    client.fetch_ohlcv("aapl", START, END)
    assert len(calls) == 1


def test_fetch_high_low_without_bars_raises(monkeypatch):
    client = _client()
    monkeypatch.setattr(client, "_post_json", lambda *args, **kwargs: [])
    with pytest.raises(MarketDataError):
        client.fetch_high_low("AAPL", START, END)


def test_parse_timestamp_accepts_seconds_and_millis():
    assert _parse_timestamp(1704153600) == START
    assert _parse_timestamp(1704153600000) == START
    assert _parse_timestamp("not a date") is None
