"""Pure parsing functions for Quartz vault account data, no I/O.

The internal API returns one JSON object per vault::

    {
      "vaultAddress": "...", "owner": "...",
      "status": "active" | "beingLiquidated" | "bankrupt",
      "vaultAccountSize": 1234,
      "maxMarginRatio": 0,
      "spotPositions": [{"marketIndex": 1, "balance": "-1500000000"}],
      "perpPositions": [{"marketIndex": 1, "baseAssetAmount": "...",
                         "quoteAssetAmount": "..."}]
    }

Balances are strings so that 64-bit amounts survive JSON.
"""
from __future__ import annotations

from typing import Any

from ...constants import OLD_VAULT_SIZE, MarketIndex
from ...models import Account, PerpPosition, Position

_LIQUIDATING_STATUSES = frozenset({"beingliquidated", "being_liquidated"})
_BANKRUPT_STATUSES = frozenset({"bankrupt"})

# Drift stores margin ratios with 1e4 precision.
MARGIN_RATIO_PRECISION = 10_000


def parse_market_index(value: Any) -> MarketIndex:
    """Map a raw market index onto a supported market; raise ValueError otherwise."""
    try:
        return MarketIndex(int(value))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Unsupported market index: {value!r}") from e


def parse_spot_position(raw: dict[str, Any]) -> Position:
    return Position(
        market_index=parse_market_index(raw["marketIndex"]),
        balance=int(raw["balance"]),
    )


def parse_perp_position(raw: dict[str, Any]) -> PerpPosition:
    return PerpPosition(
        market_index=parse_market_index(raw["marketIndex"]),
        base_asset_amount=int(raw.get("baseAssetAmount", 0)),
        quote_asset_amount=int(raw.get("quoteAssetAmount", 0)),
    )


def requires_upgrade(raw: dict[str, Any]) -> bool:
    """Vaults with no known size, or the obsolete small layout, are skipped."""
    size = raw.get("vaultAccountSize")
    if size is None:
        return True
    return int(size) <= OLD_VAULT_SIZE


def parse_account(raw: dict[str, Any]) -> Account:
    """Parse one vault object into an ``Account``.

    Raises:
        ValueError: a required field is missing or malformed, or a position
            references an unsupported market.
    """
    try:
        address = str(raw["vaultAddress"])
        owner = str(raw["owner"])
        positions = tuple(
            parse_spot_position(p)
            for p in raw.get("spotPositions") or []
            if int(p.get("balance", 0)) != 0
        )
        perp_positions = tuple(
            parse_perp_position(p) for p in raw.get("perpPositions") or []
        )
        max_margin_ratio = int(raw.get("maxMarginRatio", 0)) / MARGIN_RATIO_PRECISION
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed vault account: {e}") from e

    status = str(raw.get("status", "active")).lower()
    return Account(
        address=address,
        owner=owner,
        positions=positions,
        perp_positions=perp_positions,
        max_margin_ratio=max_margin_ratio,
        being_liquidated=status in _LIQUIDATING_STATUSES,
        bankrupt=status in _BANKRUPT_STATUSES,
        requires_upgrade=requires_upgrade(raw),
    )
