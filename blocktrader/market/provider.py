"""Market-data collection from an external provider.

Fetching quotes is not this service's job; it only awaits an injected
provider for each session symbol before the update cycle runs.
"""

import asyncio
import logging
from typing import Protocol, Union, runtime_checkable

from blocktrader.strategy.models import MarketData, SymbolMarketData

logger = logging.getLogger("blocktrader.market")


@runtime_checkable
class MarketDataProvider(Protocol):
    """Anything that can return ``{price, timestamp, history}`` for a symbol."""

    async def get_market_data(
        self, symbol: str, time_period: str,
    ) -> Union[SymbolMarketData, dict]:
        ...


async def collect_market_data(
    provider: MarketDataProvider,
    symbols: list[str],
    time_period: str,
) -> MarketData:
    """Fetch every symbol concurrently.

    A symbol whose fetch raises is logged and left out; the others are
    still returned.
    """
    results = await asyncio.gather(
        *(provider.get_market_data(symbol, time_period) for symbol in symbols),
        return_exceptions=True,
    )

    market_data: MarketData = {}
    for symbol, result in zip(symbols, results):
        if isinstance(result, BaseException):
            logger.error("Failed to get market data for %s: %s", symbol, result)
            continue
        if isinstance(result, dict):
            try:
                result = SymbolMarketData.from_dict(result)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Malformed market data for %s: %s", symbol, exc)
                continue
        market_data[symbol] = result
    return market_data
