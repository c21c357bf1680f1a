from decimal import Decimal
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from ledger.config import settings
from ledger.models.wallet import Wallet, utcnow
from ledger.services.pricing import PriceOracle

ASSET_NAMES = {
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "ADA": "Cardano",
    "SOL": "Solana",
    "USD": "US Dollar",
}

STARTER_ASSETS = ["BTC", "ETH", "ADA", "SOL", "USD"]


def asset_name(asset: str) -> str:
    return ASSET_NAMES.get(asset.upper(), asset.upper())


class WalletStore:
    """Data access for ``wallets`` rows inside the caller's session.

    Nothing here commits; the caller owns the unit of work.
    """

    def __init__(self, db: AsyncSession, oracle: PriceOracle):
        self.db = db
        self.oracle = oracle

    async def get(self, user_id: str, asset: str, lock: bool = False) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.user_id == user_id, Wallet.asset == asset.upper())
        if lock:
            stmt = stmt.with_for_update()
        return await self.db.scalar(stmt)

    async def get_all(self, user_id: str) -> List[Wallet]:
        return list(await self.db.scalars(
            select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.asset)
        ))

    async def upsert(self, wallet: Wallet) -> Wallet:
        wallet.updated_at = utcnow()
        self.db.add(wallet)
        await self.db.flush()
        return wallet

    async def create_if_absent(self, user_id: str, asset: str, lock: bool = False) -> Wallet:
        asset = asset.upper()
        wallet = await self.get(user_id, asset, lock=lock)
        if wallet:
            return wallet
        wallet = Wallet(
            user_id=user_id,
            asset=asset,
            name=asset_name(asset),
            balance=Decimal("0"),
            cached_price=await self.oracle.current_price(asset.lower()),
        )
        return await self.upsert(wallet)

    async def seed_starter_wallets(self, user_id: str) -> List[Wallet]:
        for asset in STARTER_ASSETS:
            balance = settings.STARTING_USD_BALANCE if asset == "USD" else Decimal("0")
            self.db.add(Wallet(
                user_id=user_id,
                asset=asset,
                name=asset_name(asset),
                balance=balance,
                cached_price=await self.oracle.current_price(asset.lower()),
            ))
        await self.db.flush()
        return await self.get_all(user_id)
