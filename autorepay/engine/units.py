"""Fixed-point conversions between token base units and USDC base units."""
from __future__ import annotations

import math
from decimal import ROUND_DOWN, Decimal

from ..constants import QUOTE_DECIMALS


def _to_int(value: Decimal) -> int:
    # Truncate toward zero.
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def token_value(balance: int, decimals: int, price: float) -> int:
    """Signed USDC base-unit value of ``balance`` token base units at ``price``."""
    if balance == 0 or price == 0:
        return 0
    scaled = Decimal(balance) * Decimal(str(price)) * Decimal(10) ** (QUOTE_DECIMALS - decimals)
    return _to_int(scaled)


def exact_token_value(balance: int, decimals: int, price: float) -> Decimal:
    """Untruncated USDC base-unit value, used to detect rounding-to-zero."""
    return Decimal(balance) * Decimal(str(price)) * Decimal(10) ** (QUOTE_DECIMALS - decimals)


def value_to_tokens(value: float, decimals: int, price: float, round_up: bool = False) -> int:
    """Token base units worth ``value`` USDC base units at ``price``."""
    if price <= 0:
        raise ValueError(f"Cannot convert value with non-positive price {price}")
    amount = Decimal(str(value)) / Decimal(str(price)) * Decimal(10) ** (decimals - QUOTE_DECIMALS)
    if round_up:
        return int(math.ceil(amount))
    return _to_int(amount)


def apply_weight(value: int, weight: float) -> int:
    return _to_int(Decimal(value) * Decimal(str(weight)))


def decimal_to_base_units(amount: float, decimals: int) -> int:
    return _to_int(Decimal(str(amount)) * Decimal(10) ** decimals)


def base_units_to_decimal(amount: int, decimals: int) -> float:
    return float(Decimal(amount) / Decimal(10) ** decimals)
