"""Static market definitions and protocol constants."""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

LAMPORTS_PER_SOL = 1_000_000_000

# Lamports that must stay on the caller for fees; never wrapped.
MIN_LAMPORTS_BALANCE = LAMPORTS_PER_SOL // 1000

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

QUOTE_DECIMALS = 6
QUOTE_PRECISION = 10**QUOTE_DECIMALS

LOOP_DELAY_SECONDS = 30.0
MAX_AUTO_REPAY_ATTEMPTS = 3
MAX_COLLATERAL_ATTEMPTS = 8
GOAL_HEALTH_PERCENT = 15.0
SWAP_SLIPPAGE_BPS = 50
MIN_LOAN_VALUE_DOLLARS = 1.0

# Vault accounts at or below this size use the obsolete layout.
OLD_VAULT_SIZE = 41

# Swap program error codes that indicate the output fell below the minimum.
SLIPPAGE_ERROR_CODES: tuple[str, ...] = ("0x1771", "0x1781", "0x1794")


class MarketIndex(IntEnum):
    USDC = 0
    SOL = 1
    WBTC = 3
    WETH = 4
    USDT = 5
    JITOSOL = 6


QUOTE_MARKET_INDEX = MarketIndex.USDC


class MarginCategory:
    INITIAL = "Initial"
    MAINTENANCE = "Maintenance"


@dataclass(frozen=True)
class Asset:
    """A supported token and its protocol risk weights (fractions, 1.0 = 100%)."""

    symbol: str
    mint: str
    decimals: int
    pyth_feed_id: str
    initial_asset_weight: float = 1.0
    maintenance_asset_weight: float = 1.0
    initial_liability_weight: float = 1.0
    maintenance_liability_weight: float = 1.0

    def asset_weight(self, category: str) -> float:
        if category == MarginCategory.INITIAL:
            return self.initial_asset_weight
        return self.maintenance_asset_weight

    def liability_weight(self, category: str) -> float:
        if category == MarginCategory.INITIAL:
            return self.initial_liability_weight
        return self.maintenance_liability_weight


ASSETS: dict[MarketIndex, Asset] = {
    MarketIndex.USDC: Asset(
        symbol="USDC",
        mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        decimals=6,
        pyth_feed_id="eaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a",
    ),
    MarketIndex.SOL: Asset(
        symbol="SOL",
        mint="So11111111111111111111111111111111111111112",
        decimals=9,
        pyth_feed_id="ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
        initial_asset_weight=0.8,
        maintenance_asset_weight=0.9,
        initial_liability_weight=1.2,
        maintenance_liability_weight=1.1,
    ),
    MarketIndex.WBTC: Asset(
        symbol="WBTC",
        mint="3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh",
        decimals=8,
        pyth_feed_id="e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
        initial_asset_weight=0.8,
        maintenance_asset_weight=0.9,
        initial_liability_weight=1.2,
        maintenance_liability_weight=1.1,
    ),
    MarketIndex.WETH: Asset(
        symbol="WETH",
        mint="7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs",
        decimals=8,
        pyth_feed_id="ff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
        initial_asset_weight=0.8,
        maintenance_asset_weight=0.9,
        initial_liability_weight=1.2,
        maintenance_liability_weight=1.1,
    ),
    MarketIndex.USDT: Asset(
        symbol="USDT",
        mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
        decimals=6,
        pyth_feed_id="2b89b9dc8fdf9f34709a5b106b472f0f39bb6ca9ce04b0fd7f2e971688e2e53b",
        initial_asset_weight=0.9,
        maintenance_asset_weight=0.95,
        initial_liability_weight=1.1,
        maintenance_liability_weight=1.05,
    ),
    MarketIndex.JITOSOL: Asset(
        symbol="JITOSOL",
        mint="J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn",
        decimals=9,
        pyth_feed_id="67be9f519b95cf24338801051f9a808eff0a578ccb388db73b7f6fe1de019ffb",
        initial_asset_weight=0.7,
        maintenance_asset_weight=0.8,
        initial_liability_weight=1.3,
        maintenance_liability_weight=1.2,
    ),
}


def market_by_symbol(symbol: str) -> MarketIndex:
    """Resolve a market index from a token symbol (case-insensitive)."""
    wanted = symbol.upper()
    for index, asset in ASSETS.items():
        if asset.symbol == wanted:
            return index
    raise KeyError(f"Unknown asset symbol: {symbol}")
