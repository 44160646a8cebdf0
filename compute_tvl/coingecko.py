# coingecko.py
# CoinGecko price client: bulk live prices (simple/price, simple/token_price)
# and per-coin historical prices (market_chart/range), with API-key auth, a
# caller-owned admission gate and bounded retries.

from __future__ import annotations
import asyncio
import logging
from numbers import Real
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd
import requests

from .config import HISTORY_WINDOW_SEC, LIVE_CHUNK_SIZE, TvlConfig, load_config

logger = logging.getLogger(__name__)

TokenPrices = Dict[str, Dict[str, float]]


async def no_gate() -> None:
    return None


def _usd(value) -> Optional[float]:
    if isinstance(value, Real) and not isinstance(value, bool):
        return float(value)
    return None


def nearest_price(points, ts: int) -> Optional[float]:
    """Price of the [ms, price] point closest to `ts`; ties go to the earlier point."""
    if not points:
        return None
    px = pd.DataFrame(points, columns=["ms", "price_usd"])
    px["price_usd"] = pd.to_numeric(px["price_usd"], errors="coerce")
    px = px.dropna(subset=["ms", "price_usd"]).copy()
    if px.empty:
        return None
    px["timestamp"] = (px["ms"] // 1000).astype("int64")
    px = px.sort_values("timestamp", kind="stable").reset_index(drop=True)
    nearest = (px["timestamp"] - int(ts)).abs().idxmin()
    return float(px.loc[nearest, "price_usd"])


def _chunks(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class CoinGeckoClient:
    def __init__(
        self,
        config: Optional[TvlConfig] = None,
        session: Optional[requests.Session] = None,
        chunk_size: int = LIVE_CHUNK_SIZE,
    ):
        self.config = config or load_config()
        self.session = session or requests.Session()
        self.base = self.config.coingecko_base
        self.headers = self.config.coingecko_headers()
        self.timeout = self.config.http_timeout_sec
        self.chunk_size = chunk_size

    def close(self) -> None:
        self.session.close()

    # ---------- Transport ----------
    async def _get_json(self, url: str, params: Optional[dict], lock_gate, max_retries: int) -> Optional[dict]:
        """GET with retries. Returns None on a final or exhausted failure."""
        attempts = max(0, int(max_retries)) + 1
        for attempt in range(attempts):
            # Every attempt goes through the gate, retries included.
            await lock_gate()
            try:
                r = await asyncio.to_thread(
                    self.session.get, url, params=params, headers=self.headers, timeout=self.timeout
                )
            except requests.RequestException as e:
                logger.info(f"[net] GET {url} attempt {attempt + 1}/{attempts} failed: {e}")
                continue

            if r.status_code == 429 or 500 <= r.status_code < 600:
                logger.info(f"[rate] {r.status_code} on {url} attempt {attempt + 1}/{attempts}")
                continue
            if r.status_code == 404:
                logger.debug(f"[prices] 404 on {url}")
                return None
            if r.status_code >= 400:
                logger.warning(f"[prices] {r.status_code} on {url}; giving up")
                return None

            try:
                return r.json()
            except ValueError:
                logger.info(f"[net] undecodable JSON from {url} attempt {attempt + 1}/{attempts}")
                continue

        logger.warning(f"[prices] GET {url} failed after {attempts} attempt(s)")
        return None

    # ---------- Live ----------
    async def _live_chunk(self, endpoint: str, chunk: List[str], lock_gate, max_retries: int) -> TokenPrices:
        url = f"{self.base}/{endpoint}={','.join(chunk)}&vs_currencies=usd"
        data = await self._get_json(url, None, lock_gate, max_retries)
        out: TokenPrices = {}
        for key, value in (data or {}).items():
            usd = _usd(value.get("usd")) if isinstance(value, Mapping) else None
            if usd is not None:
                out[str(key).lower()] = {"usd": usd}
        return out

    async def get_live_prices(
        self,
        ids: Iterable[str],
        endpoint: str,
        cache: Optional[Mapping[str, Mapping]] = None,
        lock_gate=None,
        max_retries: int = 3,
        prefix: str = "",
    ) -> TokenPrices:
        """
        Current USD prices for ids/addresses against a bulk endpoint.

        Entries already in `cache` (keyed by prefix + lowercased id) are served
        from it; only the rest hit the network. Keys of the result are lowercased.
        """
        cache = cache or {}
        gate = lock_gate or no_gate

        prices: TokenPrices = {}
        to_query: List[str] = []
        for token_id in ids:
            key = token_id.lower()
            known = cache.get(prefix + key)
            usd = _usd(known.get("usd")) if isinstance(known, Mapping) else None
            if usd is not None:
                prices[key] = {"usd": usd}
            elif key not in to_query:
                to_query.append(key)

        if not to_query:
            return prices

        async def fetch(chunk: List[str]) -> TokenPrices:
            try:
                return await self._live_chunk(endpoint, chunk, gate, max_retries)
            except Exception as e:
                logger.warning(f"[prices] live lookup failed for {len(chunk)} id(s) on {endpoint}: {e}")
                return {}

        for fetched in await asyncio.gather(*(fetch(c) for c in _chunks(to_query, self.chunk_size))):
            for key, value in fetched.items():
                prices.setdefault(key, value)
        return prices

    # ---------- Historical ----------
    async def get_historical_prices(
        self,
        ids: Iterable[str],
        endpoint_base: str,
        timestamp: int,
        lock_gate=None,
        max_retries: int = 3,
    ) -> TokenPrices:
        """
        USD price of each id at `timestamp`.

        One market_chart/range request per id, all issued concurrently, over
        HISTORY_WINDOW_SEC on either side of the timestamp. The price is the
        point nearest the timestamp.
        """
        gate = lock_gate or no_gate
        ts = int(timestamp)
        params = {"vs_currency": "usd", "from": ts - HISTORY_WINDOW_SEC, "to": ts + HISTORY_WINDOW_SEC}
        unique = list(dict.fromkeys(token_id.lower() for token_id in ids))

        async def fetch(token_id: str):
            url = f"{self.base}/{endpoint_base}/{token_id}/market_chart/range"
            try:
                data = await self._get_json(url, dict(params), gate, max_retries)
                return token_id, nearest_price((data or {}).get("prices"), ts)
            except Exception as e:
                logger.warning(f"[prices] historical lookup failed for {token_id}: {e}")
                return token_id, None

        prices: TokenPrices = {}
        for token_id, usd in await asyncio.gather(*(fetch(t) for t in unique)):
            if usd is not None:
                prices[token_id] = {"usd": usd}
        return prices
