"""Health and margin valuation: pure functions, no I/O.

Values are integers in USDC base units. Risk weights are fractions
(1.0 = 100%). Health is 0–100 where 100 means no liability exposure and 0
means the account can be liquidated.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from ..constants import QUOTE_MARKET_INDEX, Asset, MarginCategory, MarketIndex
from ..models import (
    Account,
    HealthResult,
    OraclePrice,
    PerpPosition,
    PriceTable,
    RiskParams,
)
from .units import apply_weight, token_value

PERP_BASE_DECIMALS = 9


@dataclass(frozen=True)
class MarginTotals:
    total_asset_value: int
    total_liability_value: int


def _missing_price(market_index: MarketIndex) -> KeyError:
    return KeyError(f"No price for market {market_index.name}")


def _asset_weight(
    asset: Asset, market_index: MarketIndex, category: str, max_margin_ratio: float
) -> float:
    weight = asset.asset_weight(category)
    if category == MarginCategory.INITIAL and market_index != QUOTE_MARKET_INDEX:
        weight = min(weight, max(0.0, 1.0 - max_margin_ratio))
    return weight


def _liability_weight(
    asset: Asset,
    market_index: MarketIndex,
    category: str,
    max_margin_ratio: float,
    liquidation_buffer: float | None,
) -> float:
    weight = asset.liability_weight(category)
    if category == MarginCategory.INITIAL and market_index != QUOTE_MARKET_INDEX:
        weight = max(weight, 1.0 + max_margin_ratio)
    if liquidation_buffer is not None:
        weight += liquidation_buffer
    return weight


def spot_asset_value(
    balance: int,
    market_index: MarketIndex,
    oracle: OraclePrice,
    risk: RiskParams,
    category: str | None,
    max_margin_ratio: float = 0.0,
    strict: bool = False,
) -> int:
    """Weighted value of a positive spot balance."""
    asset = risk.asset(market_index)
    price = oracle.strict_for_asset() if strict else oracle.price
    value = token_value(balance, asset.decimals, price)
    if category is None:
        return value
    return apply_weight(value, _asset_weight(asset, market_index, category, max_margin_ratio))


def spot_liability_value(
    balance: int,
    market_index: MarketIndex,
    oracle: OraclePrice,
    risk: RiskParams,
    category: str | None,
    max_margin_ratio: float = 0.0,
    liquidation_buffer: float | None = None,
    strict: bool = False,
) -> int:
    """Weighted value of a negative spot balance, returned as a positive number."""
    asset = risk.asset(market_index)
    price = oracle.strict_for_liability() if strict else oracle.price
    value = abs(token_value(balance, asset.decimals, price))
    if category is None:
        return value
    weight = _liability_weight(
        asset, market_index, category, max_margin_ratio, liquidation_buffer
    )
    return apply_weight(value, weight)


def _perp_values(
    perp: PerpPosition,
    prices: PriceTable,
    risk: RiskParams,
    category: str,
    liquidation_buffer: float | None,
) -> tuple[int, int]:
    """Return (unrealized pnl contribution, margin requirement) for one perp."""
    oracle = prices.get(perp.market_index)
    if oracle is None:
        raise _missing_price(perp.market_index)
    market = risk.perp_market(perp.market_index)

    base_value = token_value(perp.base_asset_amount, PERP_BASE_DECIMALS, oracle.price)
    pnl = base_value + perp.quote_asset_amount
    if pnl > 0:
        pnl = apply_weight(pnl, market.unrealized_asset_weight)

    margin_ratio = market.margin_ratio(category)
    if liquidation_buffer is not None:
        margin_ratio += liquidation_buffer
    requirement = apply_weight(abs(base_value), margin_ratio)
    return pnl, requirement


def compute_margin_totals(
    account: Account,
    prices: PriceTable,
    risk: RiskParams,
    category: str = MarginCategory.MAINTENANCE,
    liquidation_buffer: float | None = None,
    strict: bool | None = None,
) -> MarginTotals:
    """Weighted asset and liability totals of an account under one margin category.

    Quote-market balances net separately and are added to whichever side
    their sign falls on. Strict oracle pricing defaults to on whenever a
    liquidation buffer is in effect.
    """
    if strict is None:
        strict = liquidation_buffer is not None

    net_quote = 0
    total_asset = 0
    total_liability = 0
    ratio = account.max_margin_ratio

    for position in account.positions:
        if position.balance == 0:
            continue
        oracle = prices.get(position.market_index)
        if oracle is None:
            raise _missing_price(position.market_index)

        if position.balance > 0:
            value = spot_asset_value(
                position.balance, position.market_index, oracle, risk,
                category, ratio, strict,
            )
        else:
            value = -spot_liability_value(
                position.balance, position.market_index, oracle, risk,
                category, ratio, liquidation_buffer, strict,
            )

        if position.market_index == QUOTE_MARKET_INDEX:
            net_quote += value
        elif value > 0:
            total_asset += value
        else:
            total_liability += -value

    for perp in account.perp_positions:
        pnl, requirement = _perp_values(perp, prices, risk, category, liquidation_buffer)
        total_asset += pnl
        total_liability += requirement

    if net_quote > 0:
        total_asset += net_quote
    else:
        total_liability += -net_quote

    return MarginTotals(total_asset_value=total_asset, total_liability_value=total_liability)


def health_score(total_asset_value: int, total_liability_value: int) -> int:
    """Map weighted totals to a 0–100 score."""
    if total_liability_value == 0 and total_asset_value >= 0:
        return 100
    if total_asset_value <= 0:
        return 0
    ratio = 1 - total_liability_value / total_asset_value
    return round(min(100.0, max(0.0, ratio * 100)))


def compute_health(
    account: Account,
    prices: PriceTable,
    risk: RiskParams,
    category: str = MarginCategory.MAINTENANCE,
) -> HealthResult:
    """Health of an account; 0 unconditionally while it is being liquidated."""
    liquidation_buffer = None
    if account.is_being_liquidated:
        liquidation_buffer = risk.liquidation_margin_buffer

    totals = compute_margin_totals(account, prices, risk, category, liquidation_buffer)
    score = 0
    if not account.is_being_liquidated:
        score = health_score(totals.total_asset_value, totals.total_liability_value)
    return HealthResult(
        score=score,
        total_asset_value=totals.total_asset_value,
        total_liability_value=totals.total_liability_value,
    )


def apply_health_buffer(health: int, buffer_percent: float) -> int:
    """Rescale a raw protocol health so that ``buffer_percent`` maps to 0."""
    if health <= 0:
        return 0
    if health >= 100:
        return 100
    if buffer_percent <= 0:
        return health
    scaled = (health - buffer_percent) / (1 - buffer_percent / 100)
    return math.floor(min(100.0, max(0.0, scaled)))
