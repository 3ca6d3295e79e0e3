"""Jupiter swap quotes and swap instructions."""
from __future__ import annotations

import logging
from typing import Any

from ..config import JupiterConfig
from ..errors import NoRouteFoundError
from ..http import request_json
from ..models import Instruction, Quote, SwapMode
from ..retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)


def parse_quote(data: dict[str, Any]) -> Quote:
    """Build a ``Quote`` from a Jupiter quote response, keeping the raw payload."""
    return Quote(
        input_mint=data["inputMint"],
        output_mint=data["outputMint"],
        in_amount=int(data["inAmount"]),
        out_amount=int(data["outAmount"]),
        other_amount_threshold=int(data["otherAmountThreshold"]),
        swap_mode=SwapMode(data.get("swapMode", SwapMode.EXACT_IN.value)),
        slippage_bps=int(data.get("slippageBps", 0)),
        raw=data,
    )


class JupiterQuoteSource:
    """Quote source backed by the Jupiter HTTP API.

    A missing route is reported as ``None``. Rate limiting and server errors
    are retried with backoff and re-raised if they persist.
    """

    def __init__(self, config: JupiterConfig, retry: RetryConfig | None = None) -> None:
        self.quote_url = config.quote_url
        self.swap_instructions_url = config.swap_instructions_url
        self.only_direct_routes = config.only_direct_routes
        self.timeout = config.timeout
        self._retry = retry or RetryConfig()

    async def get_quote(
        self,
        mode: SwapMode,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Quote | None:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": mode.value,
            "onlyDirectRoutes": "true" if self.only_direct_routes else "false",
        }
        status, data = await retry_with_backoff(
            lambda: request_json("GET", self.quote_url, params=params, timeout=self.timeout),
            self._retry,
            description="Jupiter quote",
        )

        if status != 200 or not isinstance(data, dict):
            error = data.get("errorCode") or data.get("error") if isinstance(data, dict) else None
            logger.debug(
                "No %s route %s -> %s for %d: HTTP %s %s",
                mode.value, input_mint, output_mint, amount, status, error or "",
            )
            return None

        try:
            return parse_quote(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed Jupiter quote response: %s", e)
            return None

    async def get_swap_instructions(
        self, quote: Quote, caller: str
    ) -> tuple[list[Instruction], list[str]]:
        """Return the swap instruction for ``quote`` and its lookup table addresses."""
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": caller,
            "wrapAndUnwrapSol": False,
        }
        status, data = await retry_with_backoff(
            lambda: request_json(
                "POST", self.swap_instructions_url, json=payload, timeout=self.timeout
            ),
            self._retry,
            description="Jupiter swap-instructions",
        )

        if status != 200 or not isinstance(data, dict) or data.get("error"):
            error = data.get("error") if isinstance(data, dict) else None
            raise NoRouteFoundError(
                f"Failed to get swap instructions (HTTP {status}): {error}"
            )

        try:
            swap = Instruction.from_json(data["swapInstruction"], label="jupiter_swap")
        except (KeyError, TypeError) as e:
            raise NoRouteFoundError(f"Malformed swap instructions response: {e}") from e
        return [swap], list(data.get("addressLookupTableAddresses") or [])
