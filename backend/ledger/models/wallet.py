from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, UniqueConstraint, CheckConstraint
from ledger.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "asset", name="uq_wallet_user_asset"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(320), nullable=False, index=True)
    asset = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    balance = Column(Numeric(precision=28, scale=8), nullable=False, default=Decimal("0"))
    cached_price = Column(Numeric(precision=28, scale=8), nullable=True)
    # Optimistic concurrency token; every UPDATE is issued as "... WHERE version = :old"
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        price = self.cached_price if self.cached_price is not None else Decimal("0")
        return {
            "asset": self.asset,
            "symbol": self.asset,
            "name": self.name,
            "balance": str(self.balance),
            "price": str(price),
            "value_usd": str((self.balance * price).quantize(Decimal("0.01"))),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Wallet {self.user_id}:{self.asset} balance={self.balance} v{self.version}>"
