"""
pricing.py
- PriceOracle: the lookup the ledger uses to value deposits, withdrawals and holdings
- StaticPriceOracle: fixed in-memory table, used by default and in tests
- RedisPriceOracle: reads the market ticker cache, falling back to the static table
"""
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional
from ledger.config import settings
from ledger.core.redis import get_redis

logger = logging.getLogger(__name__)

DEFAULT_PRICE = Decimal("1.00")

DEFAULT_PRICES: Dict[str, Decimal] = {
    "btc": Decimal("45000.00"),
    "eth": Decimal("3000.00"),
    "ada": Decimal("0.50"),
    "sol": Decimal("100.00"),
    "usd": Decimal("1.00"),
}


class PriceOracle(ABC):
    @abstractmethod
    async def current_price(self, symbol: str) -> Decimal:
        """Unit price of ``symbol`` in USD. Unknown symbols price at 1.00."""


class StaticPriceOracle(PriceOracle):
    def __init__(self, prices: Optional[Mapping[str, Decimal]] = None, default: Decimal = DEFAULT_PRICE):
        source = DEFAULT_PRICES if prices is None else prices
        self.prices = {k.lower(): Decimal(str(v)) for k, v in source.items()}
        self.default = default

    async def current_price(self, symbol: str) -> Decimal:
        return self.prices.get(symbol.lower(), self.default)

    def set_price(self, symbol: str, price) -> None:
        self.prices[symbol.lower()] = Decimal(str(price))


class RedisPriceOracle(PriceOracle):
    """Reads ``market:{SYMBOL}_USD:ticker`` entries written by a market feed."""

    def __init__(self, fallback: Optional[PriceOracle] = None):
        self.fallback = fallback if fallback is not None else StaticPriceOracle()

    async def current_price(self, symbol: str) -> Decimal:
        symbol = symbol.lower()
        if symbol == "usd":
            return Decimal("1.00")
        redis = await get_redis()
        data = await redis.get(f"market:{symbol.upper()}_USD:ticker")
        if not data:
            return await self.fallback.current_price(symbol)
        try:
            price = Decimal(str(json.loads(data)["last_price"]))
        except (ValueError, KeyError, TypeError, InvalidOperation):
            logger.warning("Unreadable ticker for %s, using fallback price", symbol)
            return await self.fallback.current_price(symbol)
        if not price.is_finite() or price <= 0:
            return await self.fallback.current_price(symbol)
        return price


def get_price_oracle() -> PriceOracle:
    if settings.PRICE_SOURCE == "redis":
        return RedisPriceOracle()
    return StaticPriceOracle()
