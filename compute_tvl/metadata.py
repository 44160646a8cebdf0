from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List

from .classification import ClassifiedKeys
from .config import BSC, ETHEREUM


async def token_call(batch_call, ledger: str, method: str, addresses: List[str]) -> Dict[str, Any]:
    """
    Run one batched ERC20 read and key the successful outputs by target.

    Failed calls are dropped, so results are never matched up by position.
    """
    if not addresses:
        return {}
    calls = await batch_call(ledger, method, addresses)
    return {
        call["input"]["target"]: call.get("output")
        for call in calls
        if call.get("success") and call.get("output") is not None
    }


@dataclass
class LedgerMetadata:
    """Pending decimals/symbol lookups for one ledger."""
    decimals: "asyncio.Task[Dict[str, Any]]"
    symbols: "asyncio.Task[Dict[str, Any]]"

    def tasks(self):
        return [self.decimals, self.symbols]


def start_metadata_lookups(classified: ClassifiedKeys, batch_call) -> Dict[str, LedgerMetadata]:
    # Started now, awaited per token later.
    lookups = {}
    for ledger in (ETHEREUM, BSC):
        addresses = classified.bucket(ledger)
        lookups[ledger] = LedgerMetadata(
            decimals=asyncio.create_task(token_call(batch_call, ledger, "erc20:decimals", addresses)),
            symbols=asyncio.create_task(token_call(batch_call, ledger, "erc20:symbol", addresses)),
        )
    return lookups
