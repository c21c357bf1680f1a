"""
ledger_engine.py
- LedgerEngine: the only write path to wallets and transactions
- each public operation is one database transaction: all wallet mutations and the
  transaction append commit together or not at all
- per-(user, asset) in-process locks serialize read-modify-write; row versioning
  catches writers in other processes, which are retried with backoff
"""
import asyncio
import logging
import random
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_UP, Decimal, InvalidOperation
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from ledger.config import settings
from ledger.core.exceptions import (
    Contention,
    InsufficientBalance,
    InvalidAmount,
    InvalidPrice,
    InvalidTradeType,
    NotFound,
    ValidationError,
)
from ledger.core.locks import KeyedLocks
from ledger.models.transaction import Transaction, TransactionType
from ledger.models.wallet import Wallet
from ledger.services.pricing import PriceOracle
from ledger.services.transaction_ledger import Page, TransactionLedger
from ledger.services.wallet_store import STARTER_ASSETS, WalletStore

logger = logging.getLogger(__name__)

QUOTE_ASSET = "USD"
SCALE = Decimal("0.00000001")
MAX_PAGE_SIZE = 100

T = TypeVar("T")


def normalize_user_id(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("User id is required", field="user_id")
    return user_id.strip().lower()


def normalize_asset(asset: str) -> str:
    if not isinstance(asset, str) or not asset.strip():
        raise ValidationError("Asset symbol is required", field="asset")
    return asset.strip().upper()


def _to_decimal(value, error: Callable[[object], Exception]) -> Decimal:
    if isinstance(value, bool):
        raise error(value)
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise error(value)
    if not number.is_finite() or number <= 0:
        raise error(value)
    try:
        scaled = number.quantize(SCALE)
    except InvalidOperation:
        raise ValidationError(f"{value} is too large")
    if number != scaled:
        raise ValidationError(f"{value} has more than 8 decimal places")
    return number


def _scaled(value: Decimal, rounding: str = ROUND_HALF_EVEN) -> Decimal:
    try:
        return value.quantize(SCALE, rounding=rounding)
    except InvalidOperation:
        raise ValidationError(f"{value} is too large")


def _is_unique_violation(error: IntegrityError) -> bool:
    orig = error.orig
    if getattr(orig, "sqlstate", None) == "23505":
        return True
    return "unique" in str(orig).lower()


class LedgerEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        oracle: PriceOracle,
        fee_rate: Optional[Decimal] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.session_factory = session_factory
        self.oracle = oracle
        self.fee_rate = Decimal(str(fee_rate)) if fee_rate is not None else settings.TRADING_FEE_RATE
        self.max_retries = max_retries if max_retries is not None else settings.MAX_RETRIES
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.RETRY_BACKOFF_SECONDS
        self.locks = locks if locks is not None else KeyedLocks(timeout=settings.LOCK_TIMEOUT_SECONDS)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def _run(
        self,
        keys: Iterable[Tuple[str, str]],
        operation: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run ``operation`` in one transaction while holding the wallet locks.

        Version conflicts and duplicate wallet inserts roll back and retry;
        validation errors, balance errors and other constraint violations roll
        back and propagate unchanged.
        """
        async with self.locks.hold(keys):
            last_error: Optional[Exception] = None
            for attempt in range(1, self.max_retries + 1):
                async with self.session_factory() as db:
                    try:
                        async with db.begin():
                            return await operation(db)
                    except (StaleDataError, IntegrityError) as e:
                        if isinstance(e, IntegrityError) and not _is_unique_violation(e):
                            raise
                        last_error = e
                        logger.warning(
                            "Write conflict, retrying",
                            extra={"attempt": attempt, "error": type(e).__name__},
                        )
                if attempt < self.max_retries:
                    delay = self.retry_backoff * (2 ** (attempt - 1))
                    await asyncio.sleep(delay + random.uniform(0, delay))
            logger.error("Retries exhausted", extra={"attempts": self.max_retries})
            raise Contention(attempts=self.max_retries) from last_error

    # ------------------------------------------------------------------
    # Deposit / withdraw
    # ------------------------------------------------------------------

    async def deposit(self, user_id: str, asset: str, amount) -> Transaction:
        user_id, asset = normalize_user_id(user_id), normalize_asset(asset)
        amount = _to_decimal(amount, InvalidAmount)
        price = await self.oracle.current_price(asset.lower())

        async def apply(db: AsyncSession) -> Transaction:
            wallets = WalletStore(db, self.oracle)
            wallet = await wallets.create_if_absent(user_id, asset, lock=True)
            wallet.balance = wallet.balance + amount
            wallet.cached_price = price
            await wallets.upsert(wallet)
            return await TransactionLedger(db).append(Transaction(
                user_id=user_id,
                asset=asset,
                type=TransactionType.DEPOSIT,
                amount=amount,
                price=price,
                value=_scaled(amount * price),
                description=f"Deposit {amount} {asset}",
            ))

        txn = await self._run([(user_id, asset)], apply)
        logger.info("Deposit committed", extra={"user_id": user_id, "asset": asset, "amount": str(amount)})
        return txn

    async def withdraw(self, user_id: str, asset: str, amount) -> Transaction:
        user_id, asset = normalize_user_id(user_id), normalize_asset(asset)
        amount = _to_decimal(amount, InvalidAmount)
        price = await self.oracle.current_price(asset.lower())

        async def apply(db: AsyncSession) -> Transaction:
            wallets = WalletStore(db, self.oracle)
            wallet = await wallets.get(user_id, asset, lock=True)
            available = wallet.balance if wallet else Decimal("0")
            if available < amount:
                raise InsufficientBalance(asset, amount, available)
            wallet.balance = available - amount
            wallet.cached_price = price
            await wallets.upsert(wallet)
            return await TransactionLedger(db).append(Transaction(
                user_id=user_id,
                asset=asset,
                type=TransactionType.WITHDRAWAL,
                amount=amount,
                price=price,
                value=_scaled(amount * price),
                description=f"Withdraw {amount} {asset}",
            ))

        txn = await self._run([(user_id, asset)], apply)
        logger.info("Withdrawal committed", extra={"user_id": user_id, "asset": asset, "amount": str(amount)})
        return txn

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def execute_trade(self, user_id: str, trade_type: str, asset: str, amount, price) -> Transaction:
        """Exchange ``amount`` of ``asset`` against USD at the caller's ``price``.

        Buy debits USD by ``amount * price`` plus the fee and credits the asset;
        sell debits the asset and credits USD by the proceeds minus the fee. The
        recorded ``value`` is always the pre-fee total.
        """
        side = trade_type.strip().lower() if isinstance(trade_type, str) else None
        if side not in ("buy", "sell"):
            raise InvalidTradeType(trade_type)
        user_id, asset = normalize_user_id(user_id), normalize_asset(asset)
        if asset == QUOTE_ASSET:
            raise InvalidTradeType(trade_type, reason=f"Cannot trade {QUOTE_ASSET} against itself")
        amount = _to_decimal(amount, InvalidAmount)
        price = _to_decimal(price, InvalidPrice)

        notional = amount * price
        if notional < SCALE:
            raise InvalidAmount(amount, reason=f"Trade value at {price} is below {SCALE} {QUOTE_ASSET}")
        # Rounding always favours the ledger: buyers pay up, sellers receive down
        if side == "buy":
            total = _scaled(notional, ROUND_UP)
        else:
            total = _scaled(notional, ROUND_DOWN)
        fee = _scaled(total * self.fee_rate, ROUND_UP)
        if side == "sell" and total - fee <= 0:
            raise InvalidAmount(amount, reason=f"Sale proceeds after a {fee} {QUOTE_ASSET} fee are zero")

        async def apply(db: AsyncSession) -> Transaction:
            wallets = WalletStore(db, self.oracle)
            # Row locks are taken in symbol order, same as the in-process locks
            held = {}
            for symbol in sorted((asset, QUOTE_ASSET)):
                held[symbol] = await wallets.get(user_id, symbol, lock=True)

            if side == "buy":
                usd = held[QUOTE_ASSET]
                cost = total + fee
                if usd is None:
                    raise InsufficientBalance(QUOTE_ASSET, cost, Decimal("0"))
                available = usd.balance
                if available < cost:
                    raise InsufficientBalance(QUOTE_ASSET, cost, available)
                target = held[asset] or await wallets.create_if_absent(user_id, asset)
                usd.balance = available - cost
                target.balance = target.balance + amount
                target.cached_price = price
                await wallets.upsert(usd)
                await wallets.upsert(target)
                txn_type = TransactionType.BUY
            else:
                source = held[asset]
                available = source.balance if source else Decimal("0")
                if available < amount:
                    raise InsufficientBalance(asset, amount, available)
                usd = held[QUOTE_ASSET] or await wallets.create_if_absent(user_id, QUOTE_ASSET)
                source.balance = available - amount
                source.cached_price = price
                usd.balance = usd.balance + (total - fee)
                await wallets.upsert(source)
                await wallets.upsert(usd)
                txn_type = TransactionType.SELL

            return await TransactionLedger(db).append(Transaction(
                user_id=user_id,
                asset=asset,
                type=txn_type,
                amount=amount,
                price=price,
                value=total,
                fee=fee,
                description=f"{side.capitalize()} {amount} {asset} @ {price}",
            ))

        txn = await self._run([(user_id, asset), (user_id, QUOTE_ASSET)], apply)
        logger.info(
            "Trade committed",
            extra={"user_id": user_id, "side": side, "asset": asset,
                   "amount": str(amount), "price": str(price), "fee": str(fee)},
        )
        return txn

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_wallets(self, user_id: str) -> List[Wallet]:
        """All wallets of the user, seeding the starter set on first access.

        ``cached_price`` on the returned objects is refreshed from the oracle
        for display only; the refresh is not written back.
        """
        user_id = normalize_user_id(user_id)
        async with self.session_factory() as db:
            wallets = await WalletStore(db, self.oracle).get_all(user_id)

        if not wallets:
            async def seed(db: AsyncSession) -> List[Wallet]:
                store = WalletStore(db, self.oracle)
                return await store.get_all(user_id) or await store.seed_starter_wallets(user_id)

            wallets = await self._run([(user_id, a) for a in STARTER_ASSETS], seed)
            logger.info("Starter wallets ready", extra={"user_id": user_id})

        for wallet in wallets:
            wallet.cached_price = await self.oracle.current_price(wallet.asset.lower())
        return wallets

    async def get_wallet(self, user_id: str, asset: str) -> Wallet:
        user_id, asset = normalize_user_id(user_id), normalize_asset(asset)
        async with self.session_factory() as db:
            wallet = await WalletStore(db, self.oracle).get(user_id, asset)
        if wallet is None:
            raise NotFound("Wallet", f"{user_id}:{asset}")
        wallet.cached_price = await self.oracle.current_price(asset.lower())
        return wallet

    async def list_transactions(self, user_id: str, page: int = 0, size: int = 20) -> Page:
        user_id = normalize_user_id(user_id)
        if page < 0:
            raise ValidationError("page must be >= 0", field="page")
        if size < 1 or size > MAX_PAGE_SIZE:
            raise ValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}", field="size")
        async with self.session_factory() as db:
            return await TransactionLedger(db).list_by_user(user_id, page, size)
