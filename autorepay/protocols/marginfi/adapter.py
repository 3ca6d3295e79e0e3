"""marginfi flash-loan provider backed by the instruction service."""
from __future__ import annotations

import logging
from typing import Any

from ...config import FlashLoanConfig
from ...constants import ASSETS, MarketIndex
from ...engine.transaction import (
    FLASH_LOAN_BEGIN,
    FLASH_LOAN_BORROW,
    FLASH_LOAN_END,
    FLASH_LOAN_REPAY,
)
from ...errors import FlashLoanError
from ...http import request_json
from ...models import Instruction

logger = logging.getLogger(__name__)


class MarginfiFlashLoanProvider:
    """Flash loans from marginfi banks, one bank per market."""

    def __init__(self, config: FlashLoanConfig) -> None:
        self.base_url = config.service_url.rstrip("/")
        self.timeout = config.timeout
        self._fee_rate = config.fee_rate
        self._banks = dict(config.banks)

    @property
    def fee_rate(self) -> float:
        return self._fee_rate

    def supported_markets(self) -> list[MarketIndex]:
        return [index for index, asset in ASSETS.items() if asset.symbol in self._banks]

    def _bank(self, market_index: MarketIndex) -> str:
        symbol = ASSETS[market_index].symbol
        try:
            return self._banks[symbol]
        except KeyError as e:
            raise FlashLoanError(f"No marginfi bank for {symbol}") from e

    async def _instruction(self, path: str, payload: dict[str, Any], label: str) -> Instruction:
        status, data = await request_json(
            "POST", f"{self.base_url}{path}", json=payload, timeout=self.timeout
        )
        if status != 200 or not isinstance(data, dict) or "instruction" not in data:
            error = data.get("error") if isinstance(data, dict) else None
            raise FlashLoanError(f"Flash-loan service {path} failed (HTTP {status}): {error}")
        return Instruction.from_json(data["instruction"], label=label)

    async def make_begin(self, caller: str, end_index: int) -> Instruction:
        return await self._instruction(
            "/flash-loan/begin", {"authority": caller, "endIndex": end_index}, FLASH_LOAN_BEGIN
        )

    async def make_borrow(self, caller: str, market_index: MarketIndex, amount: int) -> Instruction:
        return await self._instruction(
            "/flash-loan/borrow",
            {"authority": caller, "bank": self._bank(market_index), "amount": str(amount)},
            FLASH_LOAN_BORROW,
        )

    async def make_repay(self, caller: str, market_index: MarketIndex, amount: int) -> Instruction:
        return await self._instruction(
            "/flash-loan/repay",
            {"authority": caller, "bank": self._bank(market_index), "amount": str(amount)},
            FLASH_LOAN_REPAY,
        )

    async def make_end(self, caller: str) -> Instruction:
        return await self._instruction(
            "/flash-loan/end", {"authority": caller}, FLASH_LOAN_END
        )
