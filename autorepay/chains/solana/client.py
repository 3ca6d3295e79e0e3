"""Solana JSON-RPC client with fallback support."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import aiohttp
from solders.pubkey import Pubkey

from ...config import SolanaConfig
from ...constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from ...errors import SolanaRpcError, TransientRpcError
from ...http import request_json
from ...models import ConfirmationResult, SignedTransaction

logger = logging.getLogger(__name__)

_CONFIRMED = ("confirmed", "finalized")


def associated_token_address(
    owner: str, mint: str, token_program: str = TOKEN_PROGRAM_ID
) -> str:
    """Derive the associated token account of ``owner`` for ``mint``."""
    address, _bump = Pubkey.find_program_address(
        [
            bytes(Pubkey.from_string(owner)),
            bytes(Pubkey.from_string(token_program)),
            bytes(Pubkey.from_string(mint)),
        ],
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return str(address)


class SolanaClient:
    """Solana RPC client with automatic endpoint fallback.

    Transport failures and HTTP 429/5xx move on to the next endpoint. A
    JSON-RPC error object is an answer, not an outage, and raises
    ``SolanaRpcError`` immediately.
    """

    def __init__(self, config: SolanaConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.commitment = config.commitment
        self.confirm_timeout = config.confirm_timeout_seconds
        self.poll_interval = config.confirm_poll_interval_seconds
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                status, result = await request_json(
                    "POST", rpc_url, json=payload, timeout=self.timeout
                )
            except (TransientRpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if not isinstance(result, dict):
                last_error = TransientRpcError(f"Unexpected RPC response (HTTP {status})", status)
                logger.warning("RPC endpoint %s returned HTTP %s", rpc_url, status)
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "error" in result:
                error = result["error"] or {}
                raise SolanaRpcError(
                    f"RPC Error: {error.get('message', error)}",
                    code=error.get("code"),
                    data=error.get("data"),
                )
            return result.get("result")

        raise TransientRpcError(f"All RPC endpoints failed. Last error: {last_error}")

    async def send_transaction(self, transaction: SignedTransaction) -> str:
        return await self.rpc_call(
            "sendTransaction",
            [
                transaction.serialized,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.commitment,
                    "maxRetries": 0,
                },
            ],
        )

    async def confirm_transaction(self, signature: str) -> ConfirmationResult:
        """Poll the signature status until it reaches the configured commitment."""
        deadline = time.monotonic() + self.confirm_timeout
        while True:
            result = await self.rpc_call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": False}],
            )
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]
            if status is not None:
                if status.get("err") is not None:
                    return ConfirmationResult(signature, confirmed=True, error=status["err"])
                if status.get("confirmationStatus") in _CONFIRMED:
                    return ConfirmationResult(signature, confirmed=True)

            if time.monotonic() >= deadline:
                logger.warning("Timed out confirming %s", signature)
                return ConfirmationResult(signature, confirmed=False, error="timeout")
            await asyncio.sleep(self.poll_interval)

    async def get_balance(self, address: str) -> int:
        result = await self.rpc_call("getBalance", [address, {"commitment": self.commitment}])
        return int((result or {}).get("value", 0))

    async def _token_accounts(self, owner: str, mint: str) -> list[dict[str, Any]]:
        result = await self.rpc_call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        return (result or {}).get("value") or []

    async def _associated_account(self, owner: str, mint: str) -> dict[str, Any] | None:
        # Token-2022 mints derive their ATA under their own program id
        for entry in await self._token_accounts(owner, mint):
            program = entry["account"].get("owner") or TOKEN_PROGRAM_ID
            if entry.get("pubkey") == associated_token_address(owner, mint, program):
                return entry
        return None

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """Base-unit balance of ``mint`` in the owner's associated token account."""
        entry = await self._associated_account(owner, mint)
        if entry is None:
            return 0
        info = entry["account"]["data"]["parsed"]["info"]
        return int(info["tokenAmount"]["amount"])

    async def missing_token_accounts(self, owner: str, mints: list[str]) -> list[str]:
        """Mints, in input order and without duplicates, the owner has no ATA for."""
        unique = list(dict.fromkeys(mints))
        accounts = await asyncio.gather(*(self._associated_account(owner, m) for m in unique))
        return [mint for mint, found in zip(unique, accounts) if found is None]

    async def get_transaction_logs(self, signature: str) -> list[str]:
        result = await self.rpc_call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return []
        return list((result.get("meta") or {}).get("logMessages") or [])
