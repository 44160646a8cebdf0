import argparse
import asyncio
import json
import logging
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path

import pandas as pd
import yaml

from .aggregator import compute_tvl
from .blockchain_utils import MulticallClient
from .coingecko import CoinGeckoClient
from .config import load_config
from .rate_limit import IntervalGate
from .timeutils import snapshot_ts_for_ny_date


def load_balances(path: Path):
    """Read balances from .json (mapping or list of {address, balance}) or .csv (address,balance)."""
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=str)
        missing = {"address", "balance"} - set(df.columns)
        if missing:
            raise ValueError(f"{path} is missing column(s): {', '.join(sorted(missing))}")
        df = df.dropna(subset=["address"])
        return [
            {"address": address.strip(), "balance": balance.strip()}
            for address, balance in zip(df["address"], df["balance"].fillna("0"))
        ]

    data = json.loads(path.read_text(), parse_float=Decimal)
    if isinstance(data, list):
        return [{"address": r["address"], "balance": r["balance"]} for r in data]
    if isinstance(data, dict):
        return data
    raise ValueError(f"{path}: expected a JSON object or list")


def _price_key(key) -> str:
    # Unquoted 0x... keys come back from YAML as ints.
    if isinstance(key, int) and not isinstance(key, bool):
        return "0x" + format(key, "040x")
    return str(key).lower()


def load_known_prices(path: Path) -> dict:
    raw = yaml.safe_load(path.read_text()) or {}
    return {_price_key(k): dict(v) for k, v in raw.items() if isinstance(v, Mapping)}


def parse_timestamp(value: str):
    if value == "now":
        return "now"
    return int(value)


def result_frame(result: dict) -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "symbol": list(result["token_balances"].keys()),
            "amount": list(result["token_balances"].values()),
            "usd": [result["usd_token_balances"].get(s, 0.0) for s in result["token_balances"]],
        },
        columns=["symbol", "amount", "usd"],
    )
    return df.sort_values("usd", ascending=False, kind="stable").reset_index(drop=True)


async def run(args) -> dict:
    config = load_config(Path(args.config) if args.config else None)
    timestamp = snapshot_ts_for_ny_date(args.date) if args.date else parse_timestamp(args.timestamp)
    balances = load_balances(Path(args.balances))
    known = load_known_prices(Path(args.known_prices)) if args.known_prices else {}

    price_client = CoinGeckoClient(config)
    multicall = MulticallClient.from_config(config)
    try:
        return await compute_tvl(
            balances,
            timestamp,
            verbose=args.verbose,
            known_token_prices=known,
            lock_gate=IntervalGate(config.min_interval_sec),
            max_retries=args.max_retries,
            batch_call=multicall.batch_call,
            price_client=price_client,
        )
    finally:
        price_client.close()
        await multicall.close()


def main():
    p = argparse.ArgumentParser(description="Compute the USD TVL of a set of token balances.")
    p.add_argument("--balances", required=True, help="Balances file (.json mapping/list or .csv address,balance)")
    when = p.add_mutually_exclusive_group()
    when.add_argument("--timestamp", default="now", help="'now' or a unix timestamp for historical prices")
    when.add_argument("--date", help="NY calendar date YYYY-MM-DD; priced at the end of that day")
    p.add_argument("--known-prices", help="YAML/JSON mapping of id/address -> {usd: price} to skip lookups")
    p.add_argument("--config", help="Path to api.yaml (default: config/api.yaml)")
    p.add_argument("--max-retries", type=int, default=3, help="Retries per price request")
    p.add_argument("--verbose", action="store_true", help="Log per-token diagnostics")
    args = p.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    result = asyncio.run(run(args))

    df = result_frame(result)
    if not df.empty:
        print(df.to_string(index=False))
    print(f"✅ Total ${result['usd_tvl']:,.2f} across {len(df)} symbol(s)")


if __name__ == "__main__":
    main()
