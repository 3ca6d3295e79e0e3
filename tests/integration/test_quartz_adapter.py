"""Integration tests for the Quartz account source and instruction builder."""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from autorepay.config import QuartzConfig
from autorepay.constants import MarketIndex
from autorepay.errors import AutoRepayError, TransientRpcError
from autorepay.models import RepayPlan, SwapMode
from autorepay.protocols.quartz import QuartzAccountSource, QuartzInstructionBuilder

INSTRUCTION = {
    "programId": "QuartzProg",
    "accounts": [{"pubkey": "Vau1t111", "isSigner": False, "isWritable": True}],
    "data": "AQ==",
}


@pytest.fixture()
def quartz_config() -> QuartzConfig:
    return QuartzConfig(
        api_endpoints=("https://quartz1.example.com/", "https://quartz2.example.com"),
        instruction_service_url="https://ix.example.com/",
    )


class TestQuartzAccountSource:
    @pytest.mark.asyncio
    async def test_list_accounts_skips_malformed(
        self, quartz_config: QuartzConfig, raw_vault: dict
    ) -> None:
        source = QuartzAccountSource(quartz_config)
        payload = {"users": [raw_vault, {"owner": "no-vault-address"}]}
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(200, payload)),
        ) as request:
            accounts = await source.list_accounts()

        assert [a.address for a in accounts] == ["Vau1t111"]
        assert request.call_args.args[1] == "https://quartz1.example.com/data/all-users"

    @pytest.mark.asyncio
    async def test_falls_back_to_next_endpoint(
        self, quartz_config: QuartzConfig, raw_vault: dict
    ) -> None:
        source = QuartzAccountSource(quartz_config)
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(side_effect=[TransientRpcError("HTTP 502", 502), (200, {"users": [raw_vault]})]),
        ):
            accounts = await source.list_accounts()

        assert len(accounts) == 1
        assert source.current_index == 1

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, quartz_config: QuartzConfig) -> None:
        source = QuartzAccountSource(quartz_config)
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(401, None)),
        ):
            with pytest.raises(TransientRpcError, match="All Quartz API endpoints failed"):
                await source.list_accounts()

    @pytest.mark.asyncio
    async def test_get_account(self, quartz_config: QuartzConfig, raw_vault: dict) -> None:
        source = QuartzAccountSource(quartz_config)
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(200, {"user": raw_vault})),
        ) as request:
            account = await source.get_account("Vau1t111")

        assert account.owner == "0wner111"
        assert request.call_args.args[1].endswith("/data/user/Vau1t111")

    @pytest.mark.asyncio
    async def test_unknown_account(self, quartz_config: QuartzConfig) -> None:
        source = QuartzAccountSource(quartz_config)
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(404, {"error": "not found"})),
        ) as request:
            with pytest.raises(AutoRepayError, match="Not found"):
                await source.get_account("Nope")

        assert request.await_count == 1


@pytest.fixture()
def plan(make_quote) -> RepayPlan:
    return RepayPlan(
        market_index_loan=MarketIndex.USDC,
        market_index_collateral=MarketIndex.SOL,
        swap_amount=95_000_000,
        swap_mode=SwapMode.EXACT_OUT,
        quote=make_quote(SwapMode.EXACT_OUT),
    )


class TestQuartzInstructionBuilder:
    @pytest.mark.asyncio
    async def test_build_repay_instructions(
        self, quartz_config: QuartzConfig, make_account, plan, make_instruction
    ) -> None:
        builder = QuartzInstructionBuilder(quartz_config)
        response = {
            "instructions": [INSTRUCTION, INSTRUCTION],
            "addressLookupTableAddresses": ["QuartzTable"],
        }
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(200, response)),
        ) as request:
            instructions, tables = await builder.build_repay_instructions(
                make_account(), plan, "CaLLer", [make_instruction("jupiter_swap")]
            )

        assert [ix.label for ix in instructions] == ["quartz_auto_repay"] * 2
        assert tables == ["QuartzTable"]
        assert request.call_args.args[1] == "https://ix.example.com/auto-repay"
        payload = request.call_args.kwargs["json"]
        assert payload["vault"] == "Vau1t111"
        assert payload["caller"] == "CaLLer"
        assert payload["marketIndexLoan"] == 0
        assert payload["marketIndexCollateral"] == 1
        assert payload["swapMode"] == "ExactOut"
        assert payload["swapAmount"] == "95000000"
        assert payload["swapInstructions"][0]["programId"] == "Progjupiter_swap"

    @pytest.mark.asyncio
    async def test_token_plumbing(self, quartz_config: QuartzConfig) -> None:
        builder = QuartzInstructionBuilder(quartz_config)
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(200, {"instructions": [INSTRUCTION]})),
        ) as request:
            created = await builder.build_create_token_accounts("CaLLer", ["MintA"])
            wrapped = await builder.build_wrap_native("CaLLer", 5_000)

        assert created[0].label == "create_token_account"
        assert wrapped[0].label == "wrap_native"
        assert request.await_args_list[1].kwargs["json"] == {"owner": "CaLLer", "lamports": "5000"}

    @pytest.mark.asyncio
    async def test_service_error(self, quartz_config: QuartzConfig, make_account, plan) -> None:
        builder = QuartzInstructionBuilder(quartz_config)
        with patch(
            "autorepay.protocols.quartz.adapter.request_json",
            AsyncMock(return_value=(500, {"error": "vault locked"})),
        ):
            with pytest.raises(AutoRepayError, match="vault locked"):
                await builder.build_repay_instructions(make_account(), plan, "CaLLer", [])
