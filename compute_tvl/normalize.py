"""Balance normalization: raw adapter output -> {token key: base-unit decimal string}."""

from __future__ import annotations
import logging
from decimal import Context, Decimal, InvalidOperation
from typing import Any, Dict, Mapping

from .config import ETHEREUM, NATIVE_DECIMALS, NATIVE_ID, ZERO_ADDRESS

logger = logging.getLogger(__name__)

# uint256 has 78 digits; keep conversions exact well past that.
_CTX = Context(prec=120)


def to_decimal(value: Any) -> Decimal:
    """Parse a balance value, returning Decimal('NaN') when it is not numeric."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("NaN")


def to_fixed(value: Decimal) -> str:
    """Fixed-point rendering: no exponent, no trailing fractional zeros."""
    if not value.is_finite():
        return "NaN"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text


def scale(value: Decimal, exponent: int) -> Decimal:
    """value * 10**exponent without rounding."""
    return _CTX.scaleb(value, exponent)


async def _list_to_base_units(records, batch_call) -> Dict[str, str]:
    addresses = [r["address"] for r in records]
    try:
        calls = await batch_call(ETHEREUM, "erc20:decimals", addresses)
    except Exception as e:
        # Treated like every call failing; affected tokens degrade at valuation.
        logger.warning(f"[normalize] decimals batch failed for {len(addresses)} token(s): {e}")
        calls = []
    decimals_by_target = {
        c["input"]["target"]: c.get("output") for c in calls if c.get("success")
    }

    out: Dict[str, str] = {}
    for record in records:
        address = record["address"]
        dec = decimals_by_target.get(address)
        if dec is None:
            if address == ZERO_ADDRESS:
                dec = NATIVE_DECIMALS
            else:
                logger.debug(f"[normalize] no decimals for {address}; amount becomes NaN")
                out[address] = "NaN"
                continue
        try:
            out[address] = to_fixed(scale(to_decimal(record["balance"]), int(dec)))
        except (InvalidOperation, TypeError, ValueError):
            out[address] = "NaN"
    return out


def _normalize_value(value: Any) -> Any:
    # Strings pass through untouched; numeric objects become fixed-point strings.
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return to_fixed(to_decimal(value))
    return value


def normalize_mapping(balances: Mapping[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in balances.items():
        if key == ZERO_ADDRESS:
            key = NATIVE_ID
            value = to_fixed(scale(to_decimal(value), -NATIVE_DECIMALS))
        normalized[key] = _normalize_value(value)
    return normalized


async def normalize_balances(raw_balances, batch_call) -> Dict[str, Any]:
    """
    Canonicalize raw balances.

    Mapping input is used as-is apart from numeric objects (rendered as
    fixed-point strings) and the zero address (rewritten to the native id in
    human units). List input, records of {address, balance} in human units,
    is first converted to base units with one batched decimals lookup.
    """
    if isinstance(raw_balances, (list, tuple)):
        balances = await _list_to_base_units(raw_balances, batch_call)
    else:
        balances = raw_balances
    return normalize_mapping(balances)
