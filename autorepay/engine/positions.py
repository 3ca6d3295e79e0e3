"""Classify balances into collateral and loan positions ordered by USD value."""
from __future__ import annotations

from ..constants import ASSETS, MarketIndex
from ..models import PriceTable, SortedPositions, ValuedPosition
from .units import exact_token_value, token_value


def position_value(market_index: MarketIndex, balance: int, prices: PriceTable) -> int:
    """Signed value in USDC base units.

    A nonzero balance whose value truncates to zero is clamped to ±1 so that
    tiny positions are never dropped.
    """
    if balance == 0:
        return 0
    asset = ASSETS[market_index]
    price = prices[market_index].price
    value = token_value(balance, asset.decimals, price)
    if value == 0:
        exact = exact_token_value(balance, asset.decimals, price)
        if exact > 0:
            return 1
        if exact < 0:
            return -1
    return value


def sort_positions(balances: dict[MarketIndex, int], prices: PriceTable) -> SortedPositions:
    """Split balances into collateral (descending value) and loans (descending |value|).

    Ties are broken by market index ascending.
    """
    collateral: list[ValuedPosition] = []
    loans: list[ValuedPosition] = []

    for market_index, balance in balances.items():
        value = position_value(MarketIndex(market_index), balance, prices)
        if value > 0:
            collateral.append(ValuedPosition(MarketIndex(market_index), value))
        elif value < 0:
            loans.append(ValuedPosition(MarketIndex(market_index), value))

    collateral.sort(key=lambda p: (-p.value, p.market_index))
    loans.sort(key=lambda p: (-abs(p.value), p.market_index))
    return SortedPositions(collateral=tuple(collateral), loans=tuple(loans))
