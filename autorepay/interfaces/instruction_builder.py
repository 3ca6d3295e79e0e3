"""Instruction builder, flash-loan and signer protocols."""
from typing import Protocol

from ..constants import MarketIndex
from ..models import Account, Instruction, RepayPlan, SignedTransaction


class RepayInstructionBuilder(Protocol):
    """Builds the lending protocol's instructions around a swap."""

    async def build_repay_instructions(
        self,
        account: Account,
        plan: RepayPlan,
        caller: str,
        swap_instructions: list[Instruction],
    ) -> tuple[list[Instruction], list[str]]: ...

    async def build_create_token_accounts(
        self, owner: str, mints: list[str]
    ) -> list[Instruction]: ...

    async def build_wrap_native(self, owner: str, lamports: int) -> list[Instruction]: ...


class FlashLoanProvider(Protocol):
    """Issues the begin/borrow/repay/end instructions of one flash loan."""

    @property
    def fee_rate(self) -> float: ...

    async def make_begin(self, caller: str, end_index: int) -> Instruction: ...

    async def make_borrow(
        self, caller: str, market_index: MarketIndex, amount: int
    ) -> Instruction: ...

    async def make_repay(
        self, caller: str, market_index: MarketIndex, amount: int
    ) -> Instruction: ...

    async def make_end(self, caller: str) -> Instruction: ...


class TransactionSigner(Protocol):
    """Signs a versioned transaction for the caller (fee payer)."""

    @property
    def caller(self) -> str: ...

    async def sign(
        self, instructions: list[Instruction], lookup_tables: list[str]
    ) -> SignedTransaction: ...
