from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from stock_journal.config.app_config import CacheSettings, MarketDataSettings
from stock_journal.errors import MarketDataError
from stock_journal.pricing.cache import ExpiringLRUCache, ohlcv_cache_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    price: float
    timestamp: datetime
    last_update: str | None = None


@dataclass(frozen=True)
class PriceBar:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


class MarketDataClient:
    def __init__(
        self,
        settings: MarketDataSettings,
        cache_settings: CacheSettings,
        *,
        quote_cache: ExpiringLRUCache[Quote] | None = None,
        ohlcv_cache: ExpiringLRUCache[list[PriceBar]] | None = None,
    ) -> None:
        self._settings = settings
        if quote_cache is None:
            quote_cache = ExpiringLRUCache(cache_settings.quote_max_entries, cache_settings.quote_ttl_seconds)
        if ohlcv_cache is None:
            ohlcv_cache = ExpiringLRUCache(cache_settings.ohlcv_max_entries, cache_settings.ohlcv_ttl_seconds)
        self._quotes = quote_cache
        self._ohlcv = ohlcv_cache

    def get_batch_quotes(self, user_id: str, tickers: Iterable[str]) -> dict[str, Quote]:
        symbols = list(dict.fromkeys(ticker.upper() for ticker in tickers if ticker))
        if not symbols:
            return {}

        result: dict[str, Quote] = {}
        to_fetch: list[str] = []
        for symbol in symbols:
            cached = self._quotes.get(symbol)
            if cached is not None:
                result[symbol] = cached
            else:
                to_fetch.append(symbol)
        if not to_fetch:
            return result

        if not self._settings.script_url:
            raise MarketDataError("Quote endpoint is not configured.")
        payload = self._post_json(
            self._settings.script_url,
            {"type": "market_data", "userId": user_id, "tickers": to_fetch},
            content_type="text/plain;charset=utf-8",
        )
        if not isinstance(payload, Mapping) or payload.get("error"):
            detail = payload.get("error") if isinstance(payload, Mapping) else None
            raise MarketDataError(str(detail or "Invalid response from quote endpoint."))

        fetched_at = datetime.now(timezone.utc)
        last_update = payload.get("timestamp")
        prices = payload.get("prices") or {}
        for symbol, price in prices.items():
            value = _to_float(price)
            if value is None:
                continue
            quote = Quote(price=value, timestamp=fetched_at, last_update=str(last_update) if last_update else None)
            self._quotes.set(symbol.upper(), quote)
            result[symbol.upper()] = quote
        logger.debug("Fetched %d quotes for %s", len(prices), ", ".join(to_fetch))
        return result

    def get_quote(self, user_id: str, ticker: str) -> Quote | None:
        try:
            quotes = self.get_batch_quotes(user_id, [ticker])
        except MarketDataError:
            logger.warning("Quote fetch failed for %s", ticker, exc_info=True)
            return None
        return quotes.get(ticker.upper())

    def fetch_ohlcv(self, ticker: str, start: datetime, end: datetime) -> list[PriceBar]:
        key = ohlcv_cache_key(ticker, start, end)
        cached = self._ohlcv.get(key)
        if cached is not None:
            return cached

        payload = self._post_json(
            self._settings.relay_url,
            {"ticker": ticker.upper(), "startDate": _iso(start), "endDate": _iso(end)},
        )
        if isinstance(payload, Mapping) and payload.get("error"):
            raise MarketDataError(f"OHLCV request failed for {ticker}: {payload['error']}")
        bars = _normalize_bars(payload)
        self._ohlcv.set(key, bars)
        return bars

    def fetch_high_low(self, ticker: str, start: datetime, end: datetime) -> tuple[float, float]:
        bars = self.fetch_ohlcv(ticker, start, end)
        if not bars:
            raise MarketDataError(f"No price data returned for {ticker}.")
        low = min(bar.low for bar in bars)
        high = max(bar.high for bar in bars)
        return low, high

    def _post_json(self, url: str, body: Mapping[str, Any], *, content_type: str = "application/json") -> Any:
        data = json.dumps(body).encode("utf-8")
        request = urllib.request.Request(
            url,
            data=data,
            method="POST",
            headers={"Content-Type": content_type, "Accept": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self._settings.timeout_seconds) as response:
                payload = response.read()
        except (urllib.error.URLError, TimeoutError) as exc:
            raise MarketDataError(f"Market data request failed: {url}: {exc}") from exc
        if not payload:
            raise MarketDataError(f"Empty response from market data endpoint: {url}")
        try:
            return json.loads(payload.decode("utf-8"))
        except json.JSONDecodeError as exc:
            snippet = payload[:500].decode("utf-8", errors="replace")
            raise MarketDataError(f"Non-JSON market data response: {snippet}") from exc


def _normalize_bars(payload: Any) -> list[PriceBar]:
    if isinstance(payload, Mapping):
        payload = payload.get("data") or payload.get("bars") or []
    if not isinstance(payload, list):
        raise MarketDataError("Unexpected OHLCV payload shape.")
    bars: list[PriceBar] = []
    for item in payload:
        if not isinstance(item, Mapping):
            continue
        timestamp = _parse_timestamp(item.get("timestamp"))
        open_ = _to_float(item.get("open"))
        high = _to_float(item.get("high"))
        low = _to_float(item.get("low"))
        close = _to_float(item.get("close"))
        if timestamp is None or None in (open_, high, low, close):
            continue
        bars.append(
            PriceBar(
                timestamp=timestamp,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=_to_float(item.get("volume")) or 0.0,
            )
        )
    bars.sort(key=lambda bar: bar.timestamp)
    return bars


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return _parse_timestamp(int(text))
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
