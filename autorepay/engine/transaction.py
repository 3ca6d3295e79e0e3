"""Transaction assembly and submission.

A repay transaction is laid out as::

    [flash-loan begin]
    create missing token accounts
    wrap native SOL
    [flash-loan borrow]
    swap + protocol repay
    [flash-loan repay (principal + fee)]
    [flash-loan end]

The bracketed instructions are only present when the caller cannot fund the
swap from its own balances.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from ..constants import ASSETS, MIN_LAMPORTS_BALANCE, SLIPPAGE_ERROR_CODES, MarketIndex
from ..errors import (
    ConfigError,
    FlashLoanError,
    SlippageExceededError,
    SolanaRpcError,
    SubmissionError,
    UnconfirmedTransactionError,
)
from ..interfaces.chain import ChainClient
from ..interfaces.instruction_builder import (
    FlashLoanProvider,
    RepayInstructionBuilder,
    TransactionSigner,
)
from ..interfaces.quote_source import QuoteSource
from ..models import Account, Instruction, RepayPlan

logger = logging.getLogger(__name__)

FLASH_LOAN_BEGIN = "flash_loan_begin"
FLASH_LOAN_BORROW = "flash_loan_borrow"
FLASH_LOAN_REPAY = "flash_loan_repay"
FLASH_LOAN_END = "flash_loan_end"


@dataclass(frozen=True)
class Funding:
    """How the collateral needed by a swap is sourced."""

    to_wrap: int
    borrow: int


def compute_funding(
    required: int,
    token_balance: int,
    lamports: int,
    collateral_is_native: bool,
) -> Funding:
    """Split a collateral shortfall between wrapping native SOL and a flash loan.

    Only lamports above ``MIN_LAMPORTS_BALANCE`` can be wrapped, and only when
    the collateral itself is SOL.
    """
    shortfall = max(0, required - max(0, token_balance))
    wrappable = max(0, lamports - MIN_LAMPORTS_BALANCE) if collateral_is_native else 0
    to_wrap = min(shortfall, wrappable)
    return Funding(to_wrap=to_wrap, borrow=max(0, shortfall - to_wrap))


def flash_loan_repay_amount(principal: int, fee_rate: float) -> int:
    """Principal plus fee, rounded up to a whole base unit."""
    amount = Decimal(principal) * (1 + Decimal(str(fee_rate)))
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


def merge_lookup_tables(*groups: Iterable[str]) -> list[str]:
    """Concatenate lookup table addresses, dropping duplicates, first seen wins."""
    merged: list[str] = []
    for group in groups:
        for address in group:
            if address not in merged:
                merged.append(address)
    return merged


def is_slippage_failure(logs: Iterable[str]) -> bool:
    return any(code in line for line in logs for code in SLIPPAGE_ERROR_CODES)


def _submission_error(
    message: str, signature: str | None, logs: tuple[str, ...]
) -> SubmissionError:
    if is_slippage_failure(logs):
        return SlippageExceededError(f"[Slippage Exceeded] {message}", signature, logs)
    return SubmissionError(message, signature, logs)


class FlashLoanRegistry:
    """Flash-loan providers keyed by the market they lend.

    Built once at startup; every market in ``markets`` must have a provider.
    """

    def __init__(
        self,
        providers: Mapping[MarketIndex, FlashLoanProvider],
        markets: Iterable[MarketIndex] = tuple(MarketIndex),
    ) -> None:
        missing = [m.name for m in markets if m not in providers]
        if missing:
            raise ConfigError(
                f"No flash-loan provider configured for markets: {', '.join(missing)}"
            )
        self._providers = dict(providers)

    def get(self, market_index: MarketIndex) -> FlashLoanProvider:
        return self._providers[market_index]


def _validate_flash_loan(
    instructions: list[Instruction], principal: int, repay_amount: int
) -> None:
    labels = [ix.label for ix in instructions]
    if labels.count(FLASH_LOAN_BEGIN) != 1 or labels.count(FLASH_LOAN_END) != 1:
        raise FlashLoanError("Flash loan must have exactly one begin and one end")
    if labels[0] != FLASH_LOAN_BEGIN or labels[-1] != FLASH_LOAN_END:
        raise FlashLoanError("Flash loan begin/end must enclose the transaction")
    if labels.count(FLASH_LOAN_BORROW) != 1 or labels.count(FLASH_LOAN_REPAY) != 1:
        raise FlashLoanError("Flash loan must have exactly one borrow and one repay")
    if labels.index(FLASH_LOAN_BORROW) > labels.index(FLASH_LOAN_REPAY):
        raise FlashLoanError("Flash loan repay precedes borrow")
    if repay_amount < principal:
        raise FlashLoanError(
            f"Flash loan repay {repay_amount} is less than principal {principal}"
        )


async def build_flash_loan_transaction(
    provider: FlashLoanProvider,
    caller: str,
    market_index: MarketIndex,
    amount: int,
    setup: list[Instruction],
    body: list[Instruction],
) -> list[Instruction]:
    """Wrap ``setup`` and ``body`` in a flash loan of ``amount`` base units."""
    if amount <= 0:
        raise FlashLoanError(f"Flash loan amount must be positive, got {amount}")
    if provider.fee_rate < 0:
        raise FlashLoanError(f"Negative flash loan fee rate {provider.fee_rate}")

    repay_amount = flash_loan_repay_amount(amount, provider.fee_rate)
    # begin + setup + borrow + body + repay, then end
    end_index = len(setup) + len(body) + 3

    begin, borrow, repay, end = await asyncio.gather(
        provider.make_begin(caller, end_index),
        provider.make_borrow(caller, market_index, amount),
        provider.make_repay(caller, market_index, repay_amount),
        provider.make_end(caller),
    )
    instructions = [begin, *setup, borrow, *body, repay, end]
    _validate_flash_loan(instructions, amount, repay_amount)
    return instructions


class TransactionBuilder:
    """Turns a repay plan into a signed, submitted and confirmed transaction."""

    def __init__(
        self,
        chain: ChainClient,
        signer: TransactionSigner,
        quotes: QuoteSource,
        instructions: RepayInstructionBuilder,
        flash_loans: FlashLoanRegistry,
    ) -> None:
        self._chain = chain
        self._signer = signer
        self._quotes = quotes
        self._instructions = instructions
        self._flash_loans = flash_loans

    async def build(
        self, account: Account, plan: RepayPlan
    ) -> tuple[list[Instruction], list[str]]:
        """Assemble the ordered instruction list and lookup tables for ``plan``."""
        caller = self._signer.caller
        loan = ASSETS[plan.market_index_loan]
        collateral = ASSETS[plan.market_index_collateral]
        collateral_is_native = plan.market_index_collateral == MarketIndex.SOL

        lamports, token_balance, missing_mints = await asyncio.gather(
            self._chain.get_balance(caller),
            self._chain.get_token_balance(caller, collateral.mint),
            self._chain.missing_token_accounts(caller, [collateral.mint, loan.mint]),
        )
        funding = compute_funding(
            plan.collateral_required, token_balance, lamports, collateral_is_native
        )
        logger.debug(
            "Funding for %s: required %d, held %d, wrap %d, borrow %d",
            account.address, plan.collateral_required, token_balance,
            funding.to_wrap, funding.borrow,
        )

        swap_instructions, swap_tables = await self._quotes.get_swap_instructions(
            plan.quote, caller
        )
        body, protocol_tables = await self._instructions.build_repay_instructions(
            account, plan, caller, swap_instructions
        )

        setup: list[Instruction] = []
        if missing_mints:
            setup.extend(
                await self._instructions.build_create_token_accounts(caller, missing_mints)
            )
        if funding.to_wrap > 0:
            setup.extend(await self._instructions.build_wrap_native(caller, funding.to_wrap))

        lookup_tables = merge_lookup_tables(swap_tables, protocol_tables)

        if funding.borrow == 0:
            return [*setup, *body], lookup_tables

        provider = self._flash_loans.get(plan.market_index_collateral)
        instructions = await build_flash_loan_transaction(
            provider, caller, plan.market_index_collateral, funding.borrow, setup, body
        )
        return instructions, lookup_tables

    async def build_and_submit(self, account: Account, plan: RepayPlan) -> str:
        """Build, sign, send and confirm; returns the transaction signature.

        Raises ``SlippageExceededError`` when the logs show the swap's minimum
        output was not met, ``UnconfirmedTransactionError`` when confirmation
        timed out and the outcome is unknown, ``SubmissionError`` for any other
        rejection.
        """
        instructions, lookup_tables = await self.build(account, plan)
        transaction = await self._signer.sign(instructions, lookup_tables)

        try:
            signature = await self._chain.send_transaction(transaction)
        except SolanaRpcError as e:
            logs: tuple[str, ...] = ()
            if isinstance(e.data, dict):
                logs = tuple(e.data.get("logs") or ())
            raise _submission_error(f"Transaction rejected: {e}", None, logs) from e

        result = await self._chain.confirm_transaction(signature)
        if not result.confirmed:
            raise UnconfirmedTransactionError(
                f"Transaction {signature} was not confirmed", signature
            )
        if result.error is not None:
            logs = tuple(await self._chain.get_transaction_logs(signature))
            raise _submission_error(
                f"Transaction {signature} failed: {result.error}", signature, logs
            )

        logger.info(
            "Confirmed repay for %s: %s (flash loan: %s)",
            account.address, signature,
            any(ix.label == FLASH_LOAN_BEGIN for ix in instructions),
        )
        return signature
