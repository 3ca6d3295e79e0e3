"""Jupiter price API, used when Pyth is missing a market."""
from __future__ import annotations

import logging

from ..config import JupiterPriceConfig
from ..constants import ASSETS, MarketIndex
from ..http import request_json
from ..models import OraclePrice, PriceTable

logger = logging.getLogger(__name__)


class JupiterPriceOracle:
    """Spot USD prices keyed by mint. No time-weighted average is available."""

    def __init__(self, config: JupiterPriceConfig, timeout: float = 15) -> None:
        self.url = config.url
        self.timeout = timeout

    async def fetch_prices(self, markets: list[MarketIndex] | None = None) -> PriceTable:
        prices: PriceTable = {}
        wanted = list(markets) if markets is not None else list(ASSETS)
        if not wanted:
            return prices

        mint_to_market = {ASSETS[m].mint: m for m in wanted}
        try:
            status, data = await request_json(
                "GET", self.url, params={"ids": ",".join(mint_to_market)}, timeout=self.timeout
            )
        except Exception as e:
            logger.error("Error fetching prices from Jupiter: %s", e)
            return prices

        if status != 200 or not isinstance(data, dict):
            logger.error("Error fetching prices from Jupiter: HTTP %s", status)
            return prices

        # v3 returns {mint: {...}}; v2 nested the same under "data".
        entries = data.get("data", data)
        for mint, market in mint_to_market.items():
            entry = entries.get(mint)
            if not isinstance(entry, dict):
                continue
            raw_price = entry.get("usdPrice", entry.get("price"))
            try:
                price = float(raw_price)
            except (TypeError, ValueError):
                logger.warning("Malformed Jupiter price for %s: %r", market.name, raw_price)
                continue
            if price > 0:
                prices[market] = OraclePrice(price=price)

        return prices
