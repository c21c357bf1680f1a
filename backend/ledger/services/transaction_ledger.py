import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from ledger.models.transaction import Transaction, TransactionType, TransactionStatus
from ledger.models.wallet import utcnow


@dataclass
class Page:
    items: List[Transaction]
    total: int
    page: int
    size: int
    pages: int = field(init=False)

    def __post_init__(self):
        self.pages = math.ceil(self.total / self.size) if self.size else 0


class TransactionLedger:
    """Append-only access to ``transactions``. Rows are never updated or deleted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, record: Transaction) -> Transaction:
        now = utcnow()
        if record.created_at is None:
            record.created_at = now
        if record.status is None:
            record.status = TransactionStatus.COMPLETED
        if record.status == TransactionStatus.COMPLETED and record.completed_at is None:
            record.completed_at = now
        if record.fee is None:
            record.fee = Decimal("0")
        self.db.add(record)
        await self.db.flush()
        return record

    async def list_by_user(self, user_id: str, page: int = 0, size: int = 20) -> Page:
        total = await self.db.scalar(
            select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
        )
        items = list(await self.db.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(page * size)
            .limit(size)
        ))
        return Page(items=items, total=total or 0, page=page, size=size)

    async def find_by_user_and_type(self, user_id: str, type: TransactionType) -> List[Transaction]:
        return list(await self.db.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id, Transaction.type == type)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ))

    async def sum_value_by_user_and_types(self, user_id: str, types: Iterable[TransactionType]) -> Decimal:
        total = await self.db.scalar(
            select(func.sum(Transaction.value)).where(
                Transaction.user_id == user_id,
                Transaction.type.in_(list(types)),
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )
        return Decimal(str(total)) if total is not None else Decimal("0")

    async def count_by_user_and_type(self, user_id: str, type: TransactionType) -> int:
        count = await self.db.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id, Transaction.type == type
            )
        )
        return count or 0
