"""Unit tests for the Jupiter quote source."""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from autorepay.config import JupiterConfig
from autorepay.constants import ASSETS, MarketIndex
from autorepay.errors import NoRouteFoundError, TransientRpcError
from autorepay.models import SwapMode
from autorepay.retry import RetryConfig
from autorepay.swaps.jupiter import JupiterQuoteSource, parse_quote

SOL_MINT = ASSETS[MarketIndex.SOL].mint
USDC_MINT = ASSETS[MarketIndex.USDC].mint

QUOTE_RESPONSE = {
    "inputMint": SOL_MINT,
    "outputMint": USDC_MINT,
    "inAmount": "1005000000",
    "outAmount": "100000000",
    "otherAmountThreshold": "1010025000",
    "swapMode": "ExactOut",
    "slippageBps": 50,
    "routePlan": [],
}


@pytest.fixture()
def quotes() -> JupiterQuoteSource:
    return JupiterQuoteSource(
        JupiterConfig(
            quote_url="https://quote.example.com/v6/quote",
            swap_instructions_url="https://swap.example.com/swap-instructions",
        ),
        retry=RetryConfig(max_retries=1, retry_delay=0),
    )


class TestParseQuote:
    def test_parses_amounts(self) -> None:
        quote = parse_quote(QUOTE_RESPONSE)
        assert quote.in_amount == 1_005_000_000
        assert quote.other_amount_threshold == 1_010_025_000
        assert quote.swap_mode == SwapMode.EXACT_OUT
        assert quote.raw is QUOTE_RESPONSE


class TestGetQuote:
    @pytest.mark.asyncio
    async def test_success(self, quotes: JupiterQuoteSource) -> None:
        with patch(
            "autorepay.swaps.jupiter.request_json",
            AsyncMock(return_value=(200, QUOTE_RESPONSE)),
        ) as request:
            quote = await quotes.get_quote(
                SwapMode.EXACT_OUT, SOL_MINT, USDC_MINT, 100_000_000, 50
            )

        assert quote is not None
        assert quote.out_amount == 100_000_000
        params = request.call_args.kwargs["params"]
        assert params["swapMode"] == "ExactOut"
        assert params["amount"] == "100000000"
        assert params["onlyDirectRoutes"] == "true"

    @pytest.mark.asyncio
    async def test_no_route_is_none(self, quotes: JupiterQuoteSource) -> None:
        with patch(
            "autorepay.swaps.jupiter.request_json",
            AsyncMock(return_value=(400, {"error": "No routes found", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"})),
        ):
            assert await quotes.get_quote(SwapMode.EXACT_IN, SOL_MINT, USDC_MINT, 1, 50) is None

    @pytest.mark.asyncio
    async def test_malformed_is_none(self, quotes: JupiterQuoteSource) -> None:
        with patch(
            "autorepay.swaps.jupiter.request_json",
            AsyncMock(return_value=(200, {"inputMint": SOL_MINT})),
        ):
            assert await quotes.get_quote(SwapMode.EXACT_IN, SOL_MINT, USDC_MINT, 1, 50) is None

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, quotes: JupiterQuoteSource) -> None:
        with patch(
            "autorepay.swaps.jupiter.request_json",
            AsyncMock(side_effect=[TransientRpcError("HTTP 429", 429), (200, QUOTE_RESPONSE)]),
        ) as request:
            quote = await quotes.get_quote(SwapMode.EXACT_OUT, SOL_MINT, USDC_MINT, 1, 50)

        assert quote is not None
        assert request.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_raises(self, quotes: JupiterQuoteSource) -> None:
        with patch(
            "autorepay.swaps.jupiter.request_json",
            AsyncMock(side_effect=TransientRpcError("HTTP 429", 429)),
        ):
            with pytest.raises(TransientRpcError):
                await quotes.get_quote(SwapMode.EXACT_OUT, SOL_MINT, USDC_MINT, 1, 50)


class TestGetSwapInstructions:
    @pytest.mark.asyncio
    async def test_success(self, quotes: JupiterQuoteSource) -> None:
        data = {
            "swapInstruction": {
                "programId": "JUP6",
                "accounts": [{"pubkey": "A", "isSigner": False, "isWritable": True}],
                "data": "AQ==",
            },
            "addressLookupTableAddresses": ["T1", "T2"],
        }
        with patch(
            "autorepay.swaps.jupiter.request_json", AsyncMock(return_value=(200, data))
        ) as request:
            instructions, tables = await quotes.get_swap_instructions(
                parse_quote(QUOTE_RESPONSE), "CaLLer"
            )

        assert [ix.label for ix in instructions] == ["jupiter_swap"]
        assert instructions[0].program_id == "JUP6"
        assert tables == ["T1", "T2"]
        payload = request.call_args.kwargs["json"]
        assert payload["quoteResponse"] == QUOTE_RESPONSE
        assert payload["userPublicKey"] == "CaLLer"
        assert payload["wrapAndUnwrapSol"] is False

    @pytest.mark.asyncio
    async def test_error_raises_no_route(self, quotes: JupiterQuoteSource) -> None:
        with patch(
            "autorepay.swaps.jupiter.request_json",
            AsyncMock(return_value=(400, {"error": "quote expired"})),
        ):
            with pytest.raises(NoRouteFoundError, match="quote expired"):
                await quotes.get_swap_instructions(parse_quote(QUOTE_RESPONSE), "CaLLer")
