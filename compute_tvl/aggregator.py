from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .blockchain_utils import MulticallClient
from .classification import classify_keys, split_key
from .coingecko import CoinGeckoClient, no_gate
from .config import IDS, load_config
from .metadata import LedgerMetadata, start_metadata_lookups
from .normalize import normalize_balances, scale, to_decimal
from .prices import Timestamp, check_timestamp, start_price_lookups

logger = logging.getLogger(__name__)

_UNITS = ["", " k", " M", " B", " T"]


@dataclass
class TokenValuation:
    key: str
    symbol: str
    amount: float
    usd_amount: float
    errored: bool = False


def humanize_number(num: float) -> str:
    value = float(num)
    idx = 0
    while abs(value) >= 1000 and idx < len(_UNITS) - 1:
        value /= 1000
        idx += 1
    return f"{value:.2f}{_UNITS[idx]}"


def add_token_balance(balances: Dict[str, float], symbol: str, amount: float) -> None:
    balances[symbol] = balances.get(symbol, 0) + amount


def _finite(value, key: str) -> float:
    if not value.is_finite():
        raise ValueError(f"non-numeric balance for {key}")
    return float(value)


async def value_token(
    key: str,
    balance: Any,
    metadata: Dict[str, LedgerMetadata],
    prices: Dict[str, "asyncio.Task"],
    verbose: bool = False,
) -> TokenValuation:
    """
    Value one normalized token. Any failure degrades the token to a zero,
    "ERROR <key>" result instead of propagating.
    """
    try:
        ledger, address = split_key(key)
        if ledger is not None:
            chain_meta = metadata[ledger]
            symbol = (await chain_meta.symbols).get(address)
            if symbol is None:
                symbol = f"UNKNOWN ({key})"
            decimals = (await chain_meta.decimals).get(address)
            if decimals is None:
                if verbose:
                    logger.warning(
                        f"Couldn't query decimals() for token {symbol} ({key}) "
                        f"so we'll ignore and assume it's amount is 0"
                    )
                amount = 0.0
            else:
                amount = _finite(scale(to_decimal(balance), -int(decimals)), key)
            price = (await prices[ledger]).get(address.lower(), {}).get("usd")
        else:
            symbol = key
            price = (await prices[IDS]).get(key.lower(), {}).get("usd")
            amount = _finite(to_decimal(balance), key)

        if price is None:
            if verbose:
                logger.info(f"Couldn't find the price of token at {key}, assuming a price of 0 for it...")
            price = 0.0

        return TokenValuation(key=key, symbol=symbol, amount=amount, usd_amount=amount * price)
    except Exception:
        logger.exception(f"Error on token {key}, we'll just assume it's price is 0...")
        return TokenValuation(key=key, symbol=f"ERROR {key}", amount=0.0, usd_amount=0.0, errored=True)


def aggregate(valuations, verbose: bool = False) -> Dict[str, Any]:
    usd_token_balances: Dict[str, float] = {}
    token_balances: Dict[str, float] = {}
    usd_tvl = 0.0
    for v in valuations:
        if verbose:
            logger.info(f"{v.symbol.ljust(25)} {humanize_number(v.usd_amount)}")
        # Errored tokens count (as zero) in the total only.
        usd_tvl += v.usd_amount
        if v.errored:
            continue
        add_token_balance(token_balances, v.symbol, v.amount)
        add_token_balance(usd_token_balances, v.symbol, v.usd_amount)
    return {
        "usd_tvl": usd_tvl,
        "usd_token_balances": usd_token_balances,
        "token_balances": token_balances,
    }


async def compute_tvl(
    balances,
    timestamp: Timestamp = "now",
    verbose: bool = False,
    known_token_prices: Optional[Mapping[str, Mapping]] = None,
    lock_gate=None,
    max_retries: int = 3,
    *,
    batch_call=None,
    price_client=None,
) -> Dict[str, Any]:
    """
    USD TVL of a set of token balances.

    Args:
        balances: {token key: balance} or [{"address", "balance"}] in human units
        timestamp: "now" for live prices, or a unix timestamp for historical ones
        verbose: log per-token diagnostics and a summary line per token
        known_token_prices: caller-owned cache {lowercased id/address: {"usd": x}}
        lock_gate: zero-arg coroutine awaited before every price request
        max_retries: retries per price request on transient failure
        batch_call: on-chain batch reader (defaults to MulticallClient)
        price_client: price source (defaults to CoinGeckoClient)

    Returns:
        {"usd_tvl", "usd_token_balances", "token_balances"}
    """
    check_timestamp(timestamp)

    # Clients created here are closed here; injected ones belong to the caller.
    owned_multicall = owned_prices = None
    if batch_call is None or price_client is None:
        config = load_config()
        if batch_call is None:
            owned_multicall = MulticallClient.from_config(config)
            batch_call = owned_multicall.batch_call
        if price_client is None:
            price_client = owned_prices = CoinGeckoClient(config)

    try:
        normalized = await normalize_balances(balances, batch_call)
        classified = classify_keys(normalized)

        metadata = start_metadata_lookups(classified, batch_call)
        prices = start_price_lookups(
            classified,
            price_client,
            timestamp,
            known_token_prices or {},
            lock_gate or no_gate,
            max_retries,
        )
        try:
            valuations = await asyncio.gather(
                *(value_token(key, balance, metadata, prices, verbose) for key, balance in normalized.items())
            )
        finally:
            started = [t for m in metadata.values() for t in m.tasks()] + list(prices.values())
            await asyncio.gather(*started, return_exceptions=True)
    finally:
        if owned_prices is not None:
            owned_prices.close()
        if owned_multicall is not None:
            await owned_multicall.close()

    return aggregate(valuations, verbose)
