import enum
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, Index
from ledger.database import Base
from ledger.models.wallet import utcnow


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    BUY = "BUY"
    SELL = "SELL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TRADE_TYPES = (TransactionType.BUY, TransactionType.SELL)


class Transaction(Base):
    """Append-only record of one balance-affecting event."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(320), nullable=False)
    asset = Column(String(20), nullable=False)
    type = Column(Enum(TransactionType, name="transaction_type"), nullable=False)
    amount = Column(Numeric(precision=28, scale=8), nullable=False)
    price = Column(Numeric(precision=28, scale=8), nullable=True)
    value = Column(Numeric(precision=28, scale=8), nullable=True)
    fee = Column(Numeric(precision=28, scale=8), nullable=False, default=Decimal("0"))
    status = Column(
        Enum(TransactionStatus, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "asset": self.asset,
            "type": self.type.value,
            "amount": str(self.amount),
            "price": str(self.price) if self.price is not None else None,
            "value": str(self.value) if self.value is not None else None,
            "fee": str(self.fee or 0),
            "status": self.status.value,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
