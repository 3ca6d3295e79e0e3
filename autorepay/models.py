"""Data models: all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from .constants import ASSETS, Asset, MarginCategory, MarketIndex

# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OraclePrice:
    """USD price of one asset plus its short time-weighted average."""

    price: float
    twap: float | None = None

    def strict_for_asset(self) -> float:
        if self.twap is None:
            return self.price
        return min(self.price, self.twap)

    def strict_for_liability(self) -> float:
        if self.twap is None:
            return self.price
        return max(self.price, self.twap)


PriceTable = dict[MarketIndex, OraclePrice]


@dataclass(frozen=True)
class PerpMarket:
    """Margin parameters of a perp market settled against its spot asset."""

    initial_margin_ratio: float = 0.1
    maintenance_margin_ratio: float = 0.05
    unrealized_asset_weight: float = 1.0

    def margin_ratio(self, category: str) -> float:
        if category == MarginCategory.INITIAL:
            return self.initial_margin_ratio
        return self.maintenance_margin_ratio


@dataclass(frozen=True)
class RiskParams:
    """Risk weights used by the health engine.

    ``liquidation_margin_buffer`` is added to liability weights while an
    account is flagged as being liquidated.
    """

    assets: dict[MarketIndex, Asset] = field(default_factory=lambda: dict(ASSETS))
    perp_markets: dict[MarketIndex, PerpMarket] = field(default_factory=dict)
    liquidation_margin_buffer: float = 0.02

    def asset(self, market_index: MarketIndex) -> Asset:
        return self.assets[market_index]

    def perp_market(self, market_index: MarketIndex) -> PerpMarket:
        return self.perp_markets.get(market_index, PerpMarket())

    def with_weight_overrides(
        self, overrides: dict[MarketIndex, dict[str, float]]
    ) -> RiskParams:
        """Return a copy with per-market weight fields replaced."""
        assets = dict(self.assets)
        for index, fields in overrides.items():
            assets[index] = replace(assets[index], **fields)
        return replace(self, assets=assets)


# ---------------------------------------------------------------------------
# Account state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Net spot balance of one asset, in integer base units (negative = borrow)."""

    market_index: MarketIndex
    balance: int


@dataclass(frozen=True)
class PerpPosition:
    """Open perp position.

    ``base_asset_amount`` uses 1e9 precision; ``quote_asset_amount`` is in
    USDC base units.
    """

    market_index: MarketIndex
    base_asset_amount: int
    quote_asset_amount: int


@dataclass(frozen=True)
class Account:
    """Vault account snapshot, rebuilt from chain state on every scan."""

    address: str
    owner: str
    positions: tuple[Position, ...] = ()
    perp_positions: tuple[PerpPosition, ...] = ()
    max_margin_ratio: float = 0.0
    being_liquidated: bool = False
    bankrupt: bool = False
    requires_upgrade: bool = False

    @property
    def is_being_liquidated(self) -> bool:
        return self.being_liquidated or self.bankrupt

    def balances(self) -> dict[MarketIndex, int]:
        """Balance per market, zero for markets without a position."""
        result = {index: 0 for index in MarketIndex}
        for position in self.positions:
            result[position.market_index] += position.balance
        return result


@dataclass(frozen=True)
class ValuedPosition:
    """A position valued in USDC base units (signed)."""

    market_index: MarketIndex
    value: int


@dataclass(frozen=True)
class SortedPositions:
    collateral: tuple[ValuedPosition, ...] = ()
    loans: tuple[ValuedPosition, ...] = ()


@dataclass(frozen=True)
class HealthResult:
    score: int
    total_asset_value: int
    total_liability_value: int


# ---------------------------------------------------------------------------
# Swaps and planning
# ---------------------------------------------------------------------------


class SwapMode(str, Enum):
    EXACT_IN = "ExactIn"
    EXACT_OUT = "ExactOut"


@dataclass(frozen=True)
class Quote:
    """Executable swap quote; ``raw`` is the provider payload passed back on swap."""

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    other_amount_threshold: int
    swap_mode: SwapMode
    slippage_bps: int
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class RepayPlan:
    market_index_loan: MarketIndex
    market_index_collateral: MarketIndex
    swap_amount: int
    swap_mode: SwapMode
    quote: Quote

    @property
    def collateral_required(self) -> int:
        """Upper bound of collateral the swap may consume."""
        if self.swap_mode == SwapMode.EXACT_IN:
            return self.quote.in_amount
        return self.quote.other_amount_threshold


@dataclass(frozen=True)
class PlanFound:
    plan: RepayPlan


@dataclass(frozen=True)
class NoRoute:
    pass


@dataclass(frozen=True)
class BelowMinimum:
    total_collateral_value: int


PlanOutcome = Union[PlanFound, NoRoute, BelowMinimum]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountMeta:
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class Instruction:
    """Opaque program instruction; ``data`` is base64."""

    program_id: str
    accounts: tuple[AccountMeta, ...] = ()
    data: str = ""
    label: str = ""

    @classmethod
    def from_json(cls, raw: dict[str, Any], label: str = "") -> Instruction:
        """Parse the ``{programId, accounts, data}`` shape used by swap/instruction APIs."""
        return cls(
            program_id=raw["programId"],
            accounts=tuple(
                AccountMeta(
                    pubkey=meta["pubkey"],
                    is_signer=bool(meta.get("isSigner", False)),
                    is_writable=bool(meta.get("isWritable", False)),
                )
                for meta in raw.get("accounts", [])
            ),
            data=raw.get("data", ""),
            label=label,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "programId": self.program_id,
            "accounts": [
                {
                    "pubkey": m.pubkey,
                    "isSigner": m.is_signer,
                    "isWritable": m.is_writable,
                }
                for m in self.accounts
            ],
            "data": self.data,
        }


@dataclass(frozen=True)
class SignedTransaction:
    """Serialized (base64) signed versioned transaction."""

    serialized: str
    instructions: tuple[Instruction, ...] = ()
    lookup_tables: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfirmationResult:
    signature: str
    confirmed: bool
    error: Any = None

    @property
    def succeeded(self) -> bool:
        return self.confirmed and self.error is None
