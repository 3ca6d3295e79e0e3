"""Pyth Network price oracle service."""
from __future__ import annotations

import logging

from ..config import PythConfig
from ..constants import ASSETS, MarketIndex
from ..http import request_json
from ..models import OraclePrice, PriceTable

logger = logging.getLogger(__name__)


def _scaled(price_data: dict) -> float:
    price_raw = int(price_data.get("price", 0))
    expo = int(price_data.get("expo", 0))
    return price_raw * (10**expo)


class PythOracle:
    """Fetch prices from the Pyth Hermes API.

    The EMA price is kept as the time-weighted average used for strict
    pricing.
    """

    def __init__(self, config: PythConfig, timeout: float = 15) -> None:
        self.hermes_url = config.hermes_url
        self.timeout = timeout
        self.price_feeds: dict[MarketIndex, str] = {
            index: config.feeds.get(asset.symbol, asset.pyth_feed_id)
            for index, asset in ASSETS.items()
        }

    async def fetch_prices(self, markets: list[MarketIndex] | None = None) -> PriceTable:
        """Fetch current prices from Pyth Network.

        Args:
            markets: Optional list of markets to fetch. If None, fetches all
                     configured feeds.

        Markets Hermes did not return are absent from the result.
        """
        prices: PriceTable = {}

        feeds = self.price_feeds
        if markets is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in markets}

        feed_ids = sorted(set(feeds.values()))
        if not feed_ids:
            return prices

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        try:
            status, data = await request_json("GET", url, timeout=self.timeout)
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return prices

        if status != 200 or not isinstance(data, dict):
            logger.error("Error fetching prices from Pyth: HTTP %s", status)
            return prices

        # Reverse mapping from feed ID to markets
        id_to_markets: dict[str, list[MarketIndex]] = {}
        for market, feed_id in feeds.items():
            id_to_markets.setdefault(feed_id.lower().removeprefix("0x"), []).append(market)

        for item in data.get("parsed", []):
            feed_id = str(item.get("id", "")).lower().removeprefix("0x")
            if feed_id not in id_to_markets:
                continue
            try:
                price = _scaled(item.get("price", {}))
                ema = item.get("ema_price")
                twap = _scaled(ema) if ema else None
            except (TypeError, ValueError) as e:
                logger.warning("Malformed Pyth price for feed %s: %s", feed_id, e)
                continue
            if price <= 0:
                logger.warning("Ignoring non-positive Pyth price for feed %s", feed_id)
                continue
            for market in id_to_markets[feed_id]:
                prices[market] = OraclePrice(price=price, twap=twap)

        logger.debug(
            "Fetched Pyth prices: %s",
            ", ".join(f"{m.name}=${p.price:.4f}" for m, p in sorted(prices.items())),
        )
        return prices
