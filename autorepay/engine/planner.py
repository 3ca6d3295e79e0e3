"""Repay planning: pick a (loan, collateral) pair and swap size that restores health."""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from ..constants import ASSETS, QUOTE_PRECISION, MarketIndex
from ..errors import TransientRpcError
from ..interfaces.quote_source import QuoteSource
from ..models import (
    BelowMinimum,
    HealthResult,
    NoRoute,
    PlanFound,
    PlanOutcome,
    PriceTable,
    RepayPlan,
    RiskParams,
    SortedPositions,
    SwapMode,
)
from .units import token_value, value_to_tokens

logger = logging.getLogger(__name__)

BPS = 10_000


def repay_value_for_goal(
    loan_value: float,
    weighted_collateral: float,
    goal_health: float,
    collateral_weight: float,
    health_buffer: float = 0.0,
) -> float:
    """USDC value to repay so that health reaches ``goal_health``.

    Health after repaying ``r`` with collateral weighted by ``w`` is::

                     L - r
        h = 1 - -------------
                  C - r * w

    optionally rescaled by a display buffer ``b`` as ``(h - b) / (1 - b)``.
    Solving for ``r`` gives::

        r = (L - C(1-b)(1-g)) / (1 - w(1-b)(1-g))

    All fractions are decimals (0.8 for 80%).
    """
    keep = (1 - health_buffer) * (1 - goal_health)
    return (loan_value - weighted_collateral * keep) / (1 - collateral_weight * keep)


async def _quote_exact_out(
    quotes: QuoteSource,
    loan_index: MarketIndex,
    collateral_index: MarketIndex,
    repay_value: int,
    balances: dict[MarketIndex, int],
    prices: PriceTable,
    slippage_bps: int,
) -> RepayPlan | None:
    loan = ASSETS[loan_index]
    collateral = ASSETS[collateral_index]
    loan_price = prices[loan_index].price
    collateral_price = prices[collateral_index].price
    collateral_balance = max(0, balances.get(collateral_index, 0))

    target_out = value_to_tokens(repay_value, loan.decimals, loan_price)
    target_out = min(target_out, abs(balances.get(loan_index, 0)))

    # What the whole collateral balance can buy after slippage.
    producible_value = token_value(collateral_balance, collateral.decimals, collateral_price)
    producible_value = producible_value * (BPS - slippage_bps) // BPS
    max_out = value_to_tokens(producible_value, loan.decimals, loan_price)

    amount_out = min(target_out, max_out)
    if amount_out <= 0:
        return None

    quote = await quotes.get_quote(
        SwapMode.EXACT_OUT, collateral.mint, loan.mint, amount_out, slippage_bps
    )
    if quote is None:
        return None
    if quote.other_amount_threshold > collateral_balance:
        logger.debug(
            "ExactOut %s->%s needs %d collateral, only %d held",
            collateral.symbol, loan.symbol,
            quote.other_amount_threshold, collateral_balance,
        )
        return None

    return RepayPlan(
        market_index_loan=loan_index,
        market_index_collateral=collateral_index,
        swap_amount=amount_out,
        swap_mode=SwapMode.EXACT_OUT,
        quote=quote,
    )


async def _quote_exact_in(
    quotes: QuoteSource,
    loan_index: MarketIndex,
    collateral_index: MarketIndex,
    repay_value: int,
    balances: dict[MarketIndex, int],
    prices: PriceTable,
    slippage_bps: int,
) -> RepayPlan | None:
    loan = ASSETS[loan_index]
    collateral = ASSETS[collateral_index]
    collateral_balance = max(0, balances.get(collateral_index, 0))

    value_with_slippage = repay_value * (BPS + slippage_bps) / BPS
    amount_in = value_to_tokens(
        value_with_slippage, collateral.decimals, prices[collateral_index].price,
        round_up=True,
    )
    amount_in = min(amount_in, collateral_balance)
    if amount_in <= 0:
        return None

    quote = await quotes.get_quote(
        SwapMode.EXACT_IN, collateral.mint, loan.mint, amount_in, slippage_bps
    )
    if quote is None:
        return None

    return RepayPlan(
        market_index_loan=loan_index,
        market_index_collateral=collateral_index,
        swap_amount=amount_in,
        swap_mode=SwapMode.EXACT_IN,
        quote=quote,
    )


async def _quote_pair(
    quotes: QuoteSource,
    loan_index: MarketIndex,
    collateral_index: MarketIndex,
    repay_value: int,
    balances: dict[MarketIndex, int],
    prices: PriceTable,
    slippage_bps: int,
) -> RepayPlan | None:
    """ExactOut first, then ExactIn. A failed quote lookup counts as no route."""
    for quote_fn in (_quote_exact_out, _quote_exact_in):
        try:
            plan = await quote_fn(
                quotes, loan_index, collateral_index, repay_value,
                balances, prices, slippage_bps,
            )
        except (TransientRpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(
                "Quote lookup failed for %s->%s: %s",
                collateral_index.name, loan_index.name, e,
            )
            continue
        if plan is not None:
            return plan
    return None


async def plan_repay(
    positions: SortedPositions,
    balances: dict[MarketIndex, int],
    prices: PriceTable,
    health: HealthResult,
    risk: RiskParams,
    quotes: QuoteSource,
    goal_health: float,
    min_repay_value: int,
    slippage_bps: int,
    skip_collateral_count: int = 0,
    health_buffer: float = 0.0,
) -> PlanOutcome:
    """Find the first (loan, collateral) pair with a usable swap route.

    Loans are tried largest first and, for each, collateral largest first
    after skipping ``skip_collateral_count`` entries. Returns ``PlanFound``,
    ``BelowMinimum`` when no pair's repay value reaches ``min_repay_value``,
    or ``NoRoute`` when every viable pair failed to quote.
    """
    is_collateral_above_min = False
    total_collateral_value = sum(p.value for p in positions.collateral)

    for loan_position in positions.loans:
        for collateral_position in positions.collateral[skip_collateral_count:]:
            loan_index = loan_position.market_index
            collateral_index = collateral_position.market_index
            if loan_index == collateral_index:
                continue

            collateral_weight = risk.asset(collateral_index).maintenance_asset_weight
            repay_value = round(
                repay_value_for_goal(
                    health.total_liability_value,
                    health.total_asset_value,
                    goal_health,
                    collateral_weight,
                    health_buffer,
                )
            )
            if repay_value < min_repay_value:
                continue
            is_collateral_above_min = True

            plan = await _quote_pair(
                quotes, loan_index, collateral_index, repay_value,
                balances, prices, slippage_bps,
            )
            if plan is not None:
                logger.info(
                    "Planned repay of %s using %s (%s, amount %d, repay value $%.2f)",
                    loan_index.name, collateral_index.name,
                    plan.swap_mode.value, plan.swap_amount, repay_value / QUOTE_PRECISION,
                )
                return PlanFound(plan)

    if not is_collateral_above_min:
        return BelowMinimum(total_collateral_value)
    return NoRoute()
