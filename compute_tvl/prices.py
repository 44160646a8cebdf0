from __future__ import annotations
import asyncio
from typing import Dict, List, Mapping, Optional, Union

from .classification import ClassifiedKeys
from .coingecko import TokenPrices, no_gate
from .config import BSC, CACHE_PREFIXES, ETHEREUM, HISTORICAL_ENDPOINTS, IDS, LIVE_ENDPOINTS

Timestamp = Union[int, str]


def is_live(timestamp: Timestamp) -> bool:
    return timestamp == "now"


def check_timestamp(timestamp: Timestamp) -> None:
    if is_live(timestamp):
        return
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise ValueError(f"timestamp must be 'now' or an int unix timestamp, got {timestamp!r}")


async def resolve_prices(
    price_client,
    ids: List[str],
    bucket: str,
    timestamp: Timestamp,
    cache: Optional[Mapping[str, Mapping]] = None,
    lock_gate=None,
    max_retries: int = 3,
) -> TokenPrices:
    """
    USD prices for one bucket (ids, ethereum or bsc), keyed by lowercased id/address.

    Live mode is one bulk lookup per bucket and honors the cache; historical
    mode is one lookup per token, each admitted through `lock_gate`.
    """
    if not ids:
        return {}
    gate = lock_gate or no_gate
    if is_live(timestamp):
        return await price_client.get_live_prices(
            ids,
            LIVE_ENDPOINTS[bucket],
            cache or {},
            gate,
            max_retries,
            CACHE_PREFIXES[bucket],
        )
    return await price_client.get_historical_prices(
        ids,
        HISTORICAL_ENDPOINTS[bucket],
        timestamp,
        gate,
        max_retries,
    )


def start_price_lookups(
    classified: ClassifiedKeys,
    price_client,
    timestamp: Timestamp,
    cache: Optional[Mapping[str, Mapping]] = None,
    lock_gate=None,
    max_retries: int = 3,
) -> Dict[str, "asyncio.Task[TokenPrices]"]:
    return {
        bucket: asyncio.create_task(
            resolve_prices(
                price_client,
                classified.bucket(bucket),
                bucket,
                timestamp,
                cache,
                lock_gate,
                max_retries,
            )
        )
        for bucket in (IDS, ETHEREUM, BSC)
    }
