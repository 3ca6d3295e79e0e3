"""Price oracles."""
from .aggregator import PriceAggregator
from .jupiter_price import JupiterPriceOracle
from .pyth import PythOracle

__all__ = ["JupiterPriceOracle", "PriceAggregator", "PythOracle"]
