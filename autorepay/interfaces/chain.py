"""Chain client protocol: Solana RPC abstraction."""
from typing import Protocol

from ..models import ConfirmationResult, SignedTransaction


class ChainClient(Protocol):
    """Submission, confirmation and balance lookups against the chain."""

    async def send_transaction(self, transaction: SignedTransaction) -> str: ...

    async def confirm_transaction(self, signature: str) -> ConfirmationResult: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_token_balance(self, owner: str, mint: str) -> int: ...

    async def get_transaction_logs(self, signature: str) -> list[str]: ...

    async def missing_token_accounts(self, owner: str, mints: list[str]) -> list[str]: ...
