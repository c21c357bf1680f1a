from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from sqlalchemy.ext.asyncio import async_sessionmaker
from ledger.config import settings
from ledger.models.transaction import TransactionType, TRADE_TYPES
from ledger.services.ledger_engine import normalize_user_id
from ledger.services.pricing import PriceOracle
from ledger.services.transaction_ledger import TransactionLedger
from ledger.services.wallet_store import WalletStore

CENTS = Decimal("0.01")
RATIO_PLACES = Decimal("0.0001")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class PortfolioValuator:
    """Read-only metrics over wallets and the transaction history."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        oracle: PriceOracle,
        initial_value: Optional[Decimal] = None,
    ):
        self.session_factory = session_factory
        self.oracle = oracle
        self.initial_value = initial_value if initial_value is not None else settings.INITIAL_PORTFOLIO_VALUE

    async def total_portfolio_value(self, user_id: str) -> Decimal:
        user_id = normalize_user_id(user_id)
        async with self.session_factory() as db:
            wallets = await WalletStore(db, self.oracle).get_all(user_id)
        total = Decimal("0")
        for w in wallets:
            total += w.balance * await self.oracle.current_price(w.asset.lower())
        return to_cents(total)

    async def portfolio_performance(self, user_id: str) -> dict:
        total = await self.total_portfolio_value(user_id)
        initial = to_cents(self.initial_value)
        gain = total - initial
        if initial == 0:
            pct = Decimal("0")
        else:
            pct = (gain / initial).quantize(RATIO_PLACES, rounding=ROUND_HALF_UP) * 100
        return {
            "total_value": total,
            "initial_value": initial,
            "total_gain": to_cents(gain),
            "total_gain_percentage": to_cents(pct),
        }

    async def profit_and_loss(self, user_id: str) -> Decimal:
        user_id = normalize_user_id(user_id)
        async with self.session_factory() as db:
            ledger = TransactionLedger(db)
            sells = await ledger.sum_value_by_user_and_types(user_id, [TransactionType.SELL])
            buys = await ledger.sum_value_by_user_and_types(user_id, [TransactionType.BUY])
        return to_cents(sells - buys)

    async def total_trading_volume(self, user_id: str) -> Decimal:
        user_id = normalize_user_id(user_id)
        async with self.session_factory() as db:
            volume = await TransactionLedger(db).sum_value_by_user_and_types(user_id, TRADE_TYPES)
        return to_cents(volume)

    async def trade_counts(self, user_id: str) -> dict:
        user_id = normalize_user_id(user_id)
        async with self.session_factory() as db:
            ledger = TransactionLedger(db)
            return {
                t.value.lower(): await ledger.count_by_user_and_type(user_id, t)
                for t in TRADE_TYPES
            }

    async def portfolio_summary(self, user_id: str, wallets) -> dict:
        """Summary block for ``wallets`` as returned by ``LedgerEngine.list_wallets``."""
        return {
            "wallets": [w.to_dict() for w in wallets],
            "total_value": await self.total_portfolio_value(user_id),
            "performance": await self.portfolio_performance(user_id),
            "trades": await self.trade_counts(user_id),
            "currency": "USD",
        }
