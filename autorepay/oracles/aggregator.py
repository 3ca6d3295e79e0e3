"""Primary/fallback price aggregation."""
from __future__ import annotations

import logging

from ..constants import ASSETS, MarketIndex
from ..errors import PriceUnavailableError
from ..interfaces.price_oracle import PriceOracle
from ..models import PriceTable

logger = logging.getLogger(__name__)


class PriceAggregator:
    """Ask the primary oracle first and fill any gaps from the fallback.

    Raises ``PriceUnavailableError`` when a requested market is still
    unpriced, so a scan never runs against a partial price table.
    """

    def __init__(self, primary: PriceOracle, fallback: PriceOracle | None = None) -> None:
        self._primary = primary
        self._fallback = fallback

    async def fetch_prices(self, markets: list[MarketIndex] | None = None) -> PriceTable:
        wanted = list(markets) if markets is not None else list(ASSETS)
        prices = {m: p for m, p in (await self._primary.fetch_prices(wanted)).items() if m in wanted}

        missing = [m for m in wanted if m not in prices]
        if missing and self._fallback is not None:
            logger.warning(
                "Primary oracle missing %s, using fallback",
                ", ".join(m.name for m in missing),
            )
            fallback_prices = await self._fallback.fetch_prices(missing)
            for market in missing:
                if market in fallback_prices:
                    prices[market] = fallback_prices[market]
            missing = [m for m in wanted if m not in prices]

        if missing:
            raise PriceUnavailableError(
                f"No price available for {', '.join(m.name for m in missing)}"
            )
        return prices
