"""Unit tests for repay planning."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from autorepay.constants import ASSETS, MarketIndex
from autorepay.engine.health import compute_health
from autorepay.engine.planner import plan_repay, repay_value_for_goal
from autorepay.engine.positions import sort_positions
from autorepay.engine.units import value_to_tokens
from autorepay.errors import TransientRpcError
from autorepay.models import BelowMinimum, NoRoute, PlanFound, SwapMode

MIN_REPAY = 1_000_000
SOL_MINT = ASSETS[MarketIndex.SOL].mint
WBTC_MINT = ASSETS[MarketIndex.WBTC].mint


class TestRepayValueForGoal:
    def test_worked_example(self) -> None:
        r = repay_value_for_goal(1000, 2000, 0.8, 0.8)
        assert r == pytest.approx(714.29, abs=0.01)

    def test_result_reaches_goal(self) -> None:
        loan, collateral, goal, weight = 1000.0, 2000.0, 0.8, 0.8
        r = repay_value_for_goal(loan, collateral, goal, weight)
        health_after = 1 - (loan - r) / (collateral - r * weight)
        assert health_after == pytest.approx(goal)

    def test_health_buffer(self) -> None:
        r = repay_value_for_goal(1000, 2000, 0.8, 0.8, health_buffer=0.1)
        assert r == pytest.approx(747.66, abs=0.01)

    def test_healthy_account_needs_no_repay(self) -> None:
        assert repay_value_for_goal(100, 2000, 0.2, 0.9) < 0


async def _plan(account, prices, risk, quotes, goal=0.2, skip=0):
    balances = account.balances()
    return await plan_repay(
        sort_positions(balances, prices),
        balances,
        prices,
        compute_health(account, prices, risk),
        risk,
        quotes,
        goal_health=goal,
        min_repay_value=MIN_REPAY,
        slippage_bps=50,
        skip_collateral_count=skip,
    )


def _expected_repay_value(account, prices, risk, market=MarketIndex.SOL, goal=0.2) -> int:
    health = compute_health(account, prices, risk)
    return round(
        repay_value_for_goal(
            health.total_liability_value,
            health.total_asset_value,
            goal,
            risk.asset(market).maintenance_asset_weight,
        )
    )


@pytest.fixture()
def unhealthy_account(make_account):
    # $1000 of SOL weighted to $900 against a $900 USDC loan
    return make_account({MarketIndex.SOL: 10_000_000_000, MarketIndex.USDC: -900_000_000})


class TestPlanRepay:
    @pytest.mark.asyncio
    async def test_exact_out_first(
        self, unhealthy_account, sample_prices, risk, make_quote
    ) -> None:
        quotes = AsyncMock()
        quotes.get_quote.return_value = make_quote(
            SwapMode.EXACT_OUT, in_amount=6_400_000_000, threshold=6_500_000_000
        )

        outcome = await _plan(unhealthy_account, sample_prices, risk, quotes)

        assert isinstance(outcome, PlanFound)
        plan = outcome.plan
        assert plan.market_index_loan == MarketIndex.USDC
        assert plan.market_index_collateral == MarketIndex.SOL
        assert plan.swap_mode == SwapMode.EXACT_OUT
        expected = _expected_repay_value(unhealthy_account, sample_prices, risk)
        assert plan.swap_amount == expected
        assert plan.collateral_required == 6_500_000_000
        quotes.get_quote.assert_awaited_once_with(
            SwapMode.EXACT_OUT, SOL_MINT, ASSETS[MarketIndex.USDC].mint, expected, 50
        )

    @pytest.mark.asyncio
    async def test_falls_back_to_exact_in(
        self, unhealthy_account, sample_prices, risk, make_quote
    ) -> None:
        exact_in = make_quote(SwapMode.EXACT_IN, in_amount=6_500_000_000)
        quotes = AsyncMock()
        quotes.get_quote.side_effect = lambda mode, *args: (
            exact_in if mode == SwapMode.EXACT_IN else None
        )

        outcome = await _plan(unhealthy_account, sample_prices, risk, quotes)

        assert isinstance(outcome, PlanFound)
        assert outcome.plan.swap_mode == SwapMode.EXACT_IN
        expected = _expected_repay_value(unhealthy_account, sample_prices, risk)
        amount_in = value_to_tokens(expected * 10_050 / 10_000, 9, 100.0, round_up=True)
        assert outcome.plan.swap_amount == amount_in
        assert quotes.get_quote.await_count == 2

    @pytest.mark.asyncio
    async def test_exact_out_needing_more_than_balance_falls_back(
        self, unhealthy_account, sample_prices, risk, make_quote
    ) -> None:
        quotes = AsyncMock()
        quotes.get_quote.side_effect = [
            make_quote(SwapMode.EXACT_OUT, threshold=11_000_000_000),
            make_quote(SwapMode.EXACT_IN, in_amount=6_500_000_000),
        ]

        outcome = await _plan(unhealthy_account, sample_prices, risk, quotes)

        assert isinstance(outcome, PlanFound)
        assert outcome.plan.swap_mode == SwapMode.EXACT_IN

    @pytest.mark.asyncio
    async def test_failing_pair_moves_to_next_collateral(
        self, make_account, sample_prices, risk, make_quote
    ) -> None:
        account = make_account(
            {
                MarketIndex.SOL: 10_000_000_000,  # $1000
                MarketIndex.WBTC: 1_000_000,  # $500
                MarketIndex.USDC: -1_300_000_000,
            }
        )

        def quote(mode, input_mint, output_mint, amount, slippage_bps):
            if input_mint == SOL_MINT:
                raise TransientRpcError("rate limited", 429)
            return make_quote(mode, input_market=MarketIndex.WBTC, threshold=999_000)

        quotes = AsyncMock()
        quotes.get_quote.side_effect = quote

        outcome = await _plan(account, sample_prices, risk, quotes)

        assert isinstance(outcome, PlanFound)
        assert outcome.plan.market_index_collateral == MarketIndex.WBTC
        # Capped by what $500 of WBTC can buy after 0.5% slippage
        assert outcome.plan.swap_amount == 497_500_000

    @pytest.mark.asyncio
    async def test_skip_collateral_count(
        self, make_account, sample_prices, risk, make_quote
    ) -> None:
        account = make_account(
            {
                MarketIndex.SOL: 10_000_000_000,
                MarketIndex.WBTC: 1_000_000,
                MarketIndex.USDC: -1_300_000_000,
            }
        )
        quotes = AsyncMock()
        quotes.get_quote.return_value = make_quote(
            input_market=MarketIndex.WBTC, threshold=999_000
        )

        outcome = await _plan(account, sample_prices, risk, quotes, skip=1)

        assert isinstance(outcome, PlanFound)
        assert outcome.plan.market_index_collateral == MarketIndex.WBTC
        for call in quotes.get_quote.await_args_list:
            assert call.args[1] == WBTC_MINT

    @pytest.mark.asyncio
    async def test_no_route(self, unhealthy_account, sample_prices, risk) -> None:
        quotes = AsyncMock()
        quotes.get_quote.return_value = None

        outcome = await _plan(unhealthy_account, sample_prices, risk, quotes)

        assert isinstance(outcome, NoRoute)
        assert quotes.get_quote.await_count == 2

    @pytest.mark.asyncio
    async def test_below_minimum(self, make_account, sample_prices, risk) -> None:
        # 0.011 SOL ($1.10) against a $1 loan: the needed repay is under $1
        account = make_account({MarketIndex.SOL: 11_000_000, MarketIndex.USDC: -1_000_000})
        quotes = AsyncMock()

        outcome = await _plan(account, sample_prices, risk, quotes)

        assert outcome == BelowMinimum(total_collateral_value=1_100_000)
        quotes.get_quote.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_collateral_is_below_minimum(
        self, make_account, sample_prices, risk
    ) -> None:
        account = make_account({MarketIndex.USDC: -5_000_000})
        outcome = await _plan(account, sample_prices, risk, AsyncMock())
        assert outcome == BelowMinimum(total_collateral_value=0)
