"""Quartz protocol adapter: vault accounts and auto-repay instructions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ...config import QuartzConfig
from ...errors import AutoRepayError, TransientRpcError
from ...http import request_json
from ...models import Account, Instruction, RepayPlan
from . import parser

logger = logging.getLogger(__name__)


class QuartzAccountSource:
    """Fetch vault accounts from the Quartz internal API, with endpoint fallback."""

    def __init__(self, config: QuartzConfig) -> None:
        self.endpoints = [e.rstrip("/") for e in config.api_endpoints]
        self.timeout = config.timeout
        self.current_index = 0

    async def _get(self, path: str) -> Any:
        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            index = (self.current_index + attempt) % len(self.endpoints)
            url = f"{self.endpoints[index]}{path}"
            try:
                status, data = await request_json("GET", url, timeout=self.timeout)
            except (TransientRpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning("Quartz API endpoint %s failed: %s", url, e)
                continue

            if status == 404:
                raise AutoRepayError(f"Not found: {path}")
            if status != 200:
                last_error = TransientRpcError(f"HTTP {status} from {url}", status)
                logger.warning("Quartz API endpoint %s returned HTTP %s", url, status)
                continue

            if index != self.current_index:
                logger.info("Switched to Quartz API endpoint: %s", self.endpoints[index])
                self.current_index = index
            return data

        raise TransientRpcError(f"All Quartz API endpoints failed. Last error: {last_error}")

    async def list_accounts(self) -> list[Account]:
        """All vault accounts. Malformed entries are logged and skipped."""
        data = await self._get("/data/all-users")
        accounts: list[Account] = []
        for raw in (data or {}).get("users", []):
            try:
                accounts.append(parser.parse_account(raw))
            except ValueError as e:
                logger.error(
                    "Skipping vault %s: %s", raw.get("vaultAddress", "<unknown>"), e
                )
        return accounts

    async def get_account(self, address: str) -> Account:
        data = await self._get(f"/data/user/{address}")
        if not isinstance(data, dict):
            raise AutoRepayError(f"Unexpected account payload for {address}")
        return parser.parse_account(data.get("user", data))


class QuartzInstructionBuilder:
    """Request auto-repay and token plumbing instructions from the instruction service."""

    def __init__(self, config: QuartzConfig) -> None:
        self.base_url = config.instruction_service_url.rstrip("/")
        self.timeout = config.timeout

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        status, data = await request_json(
            "POST", f"{self.base_url}{path}", json=payload, timeout=self.timeout
        )
        if status != 200 or not isinstance(data, dict) or data.get("error"):
            error = data.get("error") if isinstance(data, dict) else None
            raise AutoRepayError(f"Instruction service {path} failed (HTTP {status}): {error}")
        return data

    @staticmethod
    def _instructions(data: dict[str, Any], label: str) -> list[Instruction]:
        return [Instruction.from_json(raw, label=label) for raw in data.get("instructions", [])]

    async def build_repay_instructions(
        self,
        account: Account,
        plan: RepayPlan,
        caller: str,
        swap_instructions: list[Instruction],
    ) -> tuple[list[Instruction], list[str]]:
        """Start, swap, deposit and withdraw instructions, in execution order."""
        data = await self._post(
            "/auto-repay",
            {
                "vault": account.address,
                "owner": account.owner,
                "caller": caller,
                "marketIndexLoan": int(plan.market_index_loan),
                "marketIndexCollateral": int(plan.market_index_collateral),
                "swapMode": plan.swap_mode.value,
                "swapAmount": str(plan.swap_amount),
                "swapInstructions": [ix.to_json() for ix in swap_instructions],
            },
        )
        return (
            self._instructions(data, "quartz_auto_repay"),
            list(data.get("addressLookupTableAddresses") or []),
        )

    async def build_create_token_accounts(
        self, owner: str, mints: list[str]
    ) -> list[Instruction]:
        data = await self._post("/create-token-accounts", {"owner": owner, "mints": mints})
        return self._instructions(data, "create_token_account")

    async def build_wrap_native(self, owner: str, lamports: int) -> list[Instruction]:
        data = await self._post("/wrap-native", {"owner": owner, "lamports": str(lamports)})
        return self._instructions(data, "wrap_native")
