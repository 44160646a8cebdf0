from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .config import BSC, BSC_PREFIX, ETH_PREFIX, ETHEREUM, IDS


@dataclass
class ClassifiedKeys:
    ethereum: List[str] = field(default_factory=list)
    bsc: List[str] = field(default_factory=list)  # prefix already stripped
    ids: List[str] = field(default_factory=list)

    def bucket(self, name: str) -> List[str]:
        return {ETHEREUM: self.ethereum, BSC: self.bsc, IDS: self.ids}[name]


def split_key(key: str) -> Tuple[Optional[str], str]:
    """Return (ledger, lookup address) for a normalized key; ledger is None for opaque ids.

    Case-sensitive prefix test, "0x" checked before "bsc:".
    """
    if key.startswith(ETH_PREFIX):
        return ETHEREUM, key
    if key.startswith(BSC_PREFIX):
        return BSC, key[len(BSC_PREFIX):]
    return None, key


def classify_keys(keys: Iterable[str]) -> ClassifiedKeys:
    out = ClassifiedKeys()
    seen = set()
    for key in keys:
        ledger, address = split_key(key)
        bucket = out.bucket(ledger or IDS)
        if (ledger, address) in seen:
            continue
        seen.add((ledger, address))
        bucket.append(address)
    return out
