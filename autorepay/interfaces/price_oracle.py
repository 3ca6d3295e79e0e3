"""Price oracle protocol: price feed abstraction."""
from typing import Protocol

from ..constants import MarketIndex
from ..models import PriceTable


class PriceOracle(Protocol):
    """Fetches USD prices keyed by market index."""

    async def fetch_prices(
        self, markets: list[MarketIndex] | None = None
    ) -> PriceTable: ...
