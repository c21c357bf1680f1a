import asyncio
import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from ledger.core.exceptions import Contention, InsufficientBalance, NotFound
from ledger.core.locks import KeyedLocks
from ledger.database import Base
from ledger.models.transaction import TransactionType
from ledger.services.ledger_engine import LedgerEngine
from ledger.services.wallet_store import WalletStore

USER = "racer@example.com"


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_withdrawals_drain_exactly(ledger_engine):
    n, x = 10, Decimal("12.5")
    await ledger_engine.deposit(USER, "USD", n * x)

    results = await asyncio.gather(*[ledger_engine.withdraw(USER, "USD", x) for _ in range(n)])

    assert len(results) == n
    assert len({t.id for t in results}) == n
    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("0")
    history = (await ledger_engine.list_transactions(USER, 0, 100)).items
    assert len([t for t in history if t.type == TransactionType.WITHDRAWAL]) == n


@pytest.mark.asyncio
async def test_concurrent_overdraw_never_goes_negative(ledger_engine):
    await ledger_engine.deposit(USER, "USD", "30")

    results = await asyncio.gather(
        *[ledger_engine.withdraw(USER, "USD", "10") for _ in range(5)],
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 2
    assert all(isinstance(r, InsufficientBalance) for r in failures)
    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("0")


@pytest.mark.asyncio
async def test_concurrent_deposits_all_apply(ledger_engine):
    await asyncio.gather(*[ledger_engine.deposit(USER, "BTC", "0.1") for _ in range(8)])
    assert (await ledger_engine.get_wallet(USER, "BTC")).balance == Decimal("0.8")


@pytest.mark.asyncio
async def test_opposite_trades_on_same_pair_complete(ledger_engine):
    await ledger_engine.deposit(USER, "USD", "1000")
    await ledger_engine.deposit(USER, "SOL", "10")

    await asyncio.gather(
        ledger_engine.execute_trade(USER, "buy", "SOL", "1", "100"),
        ledger_engine.execute_trade(USER, "sell", "SOL", "2", "100"),
        ledger_engine.execute_trade(USER, "buy", "SOL", "3", "100"),
    )

    assert (await ledger_engine.get_wallet(USER, "SOL")).balance == Decimal("12")
    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("800")


@pytest.mark.asyncio
async def test_stale_version_is_detected(file_session_factory, oracle):
    async with file_session_factory() as db:
        await WalletStore(db, oracle).create_if_absent(USER, "USD")
        await db.commit()

    async with file_session_factory() as slow, file_session_factory() as fast:
        stale = await WalletStore(slow, oracle).get(USER, "USD")
        fresh = await WalletStore(fast, oracle).get(USER, "USD")
        fresh.balance = Decimal("5")
        await WalletStore(fast, oracle).upsert(fresh)
        await fast.commit()

        stale.balance = Decimal("7")
        with pytest.raises(StaleDataError):
            await WalletStore(slow, oracle).upsert(stale)
        await slow.rollback()

    async with file_session_factory() as db:
        assert (await WalletStore(db, oracle).get(USER, "USD")).balance == Decimal("5")


@pytest.mark.asyncio
async def test_conflict_is_retried_then_succeeds(ledger_engine):
    await ledger_engine.deposit(USER, "USD", "100")
    original = WalletStore.upsert
    calls = {"n": 0}

    async def flaky_upsert(self, wallet):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StaleDataError("simulated concurrent update")
        return await original(self, wallet)

    with patch.object(WalletStore, "upsert", flaky_upsert):
        await ledger_engine.withdraw(USER, "USD", "30")

    assert calls["n"] == 2
    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("70")
    history = (await ledger_engine.list_transactions(USER, 0, 100)).items
    assert len(history) == 2


@pytest.mark.asyncio
async def test_persistent_conflict_raises_contention(ledger_engine):
    await ledger_engine.deposit(USER, "USD", "100")

    async def always_stale(self, wallet):
        raise StaleDataError("simulated concurrent update")

    with patch.object(WalletStore, "upsert", always_stale):
        with pytest.raises(Contention) as exc:
            await ledger_engine.withdraw(USER, "USD", "30")

    assert exc.value.retryable is True
    assert exc.value.attempts == ledger_engine.max_retries
    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("100")
    assert len((await ledger_engine.list_transactions(USER, 0, 100)).items) == 1


@pytest.mark.asyncio
async def test_trade_failure_after_usd_debit_rolls_back(ledger_engine):
    await ledger_engine.deposit(USER, "USD", "1000")
    original = WalletStore.upsert
    calls = {"n": 0}

    async def fail_asset_credit(self, wallet):
        calls["n"] += 1
        if calls["n"] == 3:
            raise RuntimeError("disk full")
        return await original(self, wallet)

    with patch.object(WalletStore, "upsert", fail_asset_credit):
        with pytest.raises(RuntimeError):
            await ledger_engine.execute_trade(USER, "buy", "BTC", "0.01", "45000")

    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("1000")
    with pytest.raises(NotFound):
        await ledger_engine.get_wallet(USER, "BTC")
    assert len((await ledger_engine.list_transactions(USER, 0, 100)).items) == 1


@pytest.mark.asyncio
async def test_lock_wait_is_bounded(session_factory, oracle):
    locks = KeyedLocks(timeout=0.05)
    engine = LedgerEngine(session_factory, oracle, max_retries=1, retry_backoff=0, locks=locks)
    async with locks.hold([(USER, "USD")]):
        with pytest.raises(Contention):
            await engine.deposit(USER, "USD", "1")


@pytest.mark.asyncio
async def test_duplicate_wallet_insert_is_retried(ledger_engine):
    original = WalletStore.upsert
    calls = {"n": 0}

    async def racing_insert(self, wallet):
        calls["n"] += 1
        if calls["n"] == 1:
            raise IntegrityError(
                "INSERT INTO wallets", {},
                Exception("UNIQUE constraint failed: wallets.user_id, wallets.asset"),
            )
        return await original(self, wallet)

    with patch.object(WalletStore, "upsert", racing_insert):
        await ledger_engine.deposit(USER, "ETH", "1")

    assert calls["n"] == 2
    assert (await ledger_engine.get_wallet(USER, "ETH")).balance == Decimal("1")


@pytest.mark.asyncio
async def test_check_violation_is_not_retried(ledger_engine):
    await ledger_engine.deposit(USER, "USD", "100")
    calls = {"n": 0}

    async def negative_balance(self, wallet):
        calls["n"] += 1
        raise IntegrityError(
            "UPDATE wallets", {},
            Exception("CHECK constraint failed: ck_wallet_balance_non_negative"),
        )

    with patch.object(WalletStore, "upsert", negative_balance):
        with pytest.raises(IntegrityError):
            await ledger_engine.withdraw(USER, "USD", "30")

    assert calls["n"] == 1
    assert (await ledger_engine.get_wallet(USER, "USD")).balance == Decimal("100")
