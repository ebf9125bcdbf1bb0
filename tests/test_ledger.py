import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import DuplicateTransaction, InsufficientFunds, InvalidAmount, NotFound
from app.db.session import unit_of_work
from app.models.wallet import LedgerEntry, WalletAccount, KIND_ADJUSTMENT, KIND_DEPOSIT, CLASS_REAL, CLASS_BONUS
from app.services import ledger_service
from app.services.balance_service import reconcile
from app.services.ledger_service import q2


async def _append(factory, user_id, amount, kind=KIND_ADJUSTMENT, related_id=None, balance_class=CLASS_REAL, **kw):
    async with unit_of_work(factory) as session:
        return await ledger_service.append(
            session, user_id=user_id, kind=kind, balance_class=balance_class,
            amount=amount, related_id=related_id, **kw,
        )


def test_q2_rounds_half_up():
    assert q2("1.005") == Decimal("1.01")
    assert q2(Decimal("2.344")) == Decimal("2.34")
    assert q2(3) == Decimal("3.00")


@pytest.mark.asyncio
async def test_append_updates_projection(factory, make_user, balances):
    uid = await make_user()
    await _append(factory, uid, "100.00", kind=KIND_DEPOSIT, related_id=1)
    await _append(factory, uid, "-40.50")

    b = await balances(uid)
    assert b.real == Decimal("59.50")
    assert b.bonus == Decimal("0.00")
    async with factory() as session:
        acc = await session.scalar(select(WalletAccount).where(WalletAccount.user_id == uid))
        assert acc.version == 2


@pytest.mark.asyncio
async def test_overdraft_is_rejected_without_effect(factory, make_user, balances):
    uid = await make_user()
    await _append(factory, uid, "10", kind=KIND_DEPOSIT, related_id=7)

    with pytest.raises(InsufficientFunds):
        await _append(factory, uid, "-10.01")

    assert (await balances(uid)).real == Decimal("10.00")
    async with factory() as session:
        n = await session.scalar(select(func.count(LedgerEntry.id)).where(LedgerEntry.user_id == uid))
    assert n == 1


@pytest.mark.asyncio
async def test_same_effect_applies_once(factory, make_user, balances):
    uid = await make_user()
    await _append(factory, uid, "25", kind=KIND_DEPOSIT, related_id=42)
    with pytest.raises(DuplicateTransaction):
        await _append(factory, uid, "25", kind=KIND_DEPOSIT, related_id=42)
    assert (await balances(uid)).real == Decimal("25.00")


@pytest.mark.asyncio
async def test_invalid_entries(factory, make_user):
    uid = await make_user()
    with pytest.raises(ValueError):
        await _append(factory, uid, "5", kind="gift")
    with pytest.raises(ValueError):
        await _append(factory, uid, "5", balance_class=CLASS_BONUS)
    with pytest.raises(InvalidAmount):
        await _append(factory, uid, "0")
    # rounds to zero cents
    with pytest.raises(InvalidAmount):
        await _append(factory, uid, "0.004")
    with pytest.raises(NotFound):
        await _append(factory, 987654, "5")


@pytest.mark.asyncio
async def test_entries_for_limit_keeps_order(factory, make_user):
    uid = await make_user()
    for i in range(1, 6):
        await _append(factory, uid, str(i), kind=KIND_DEPOSIT, related_id=100 + i)

    async with factory() as session:
        last = await ledger_service.entries_for(session, uid, limit=2)
        full = await ledger_service.entries_for(session, uid)
    assert [e.related_id for e in last] == [104, 105]
    assert [e.related_id for e in full] == [101, 102, 103, 104, 105]


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(factory, make_user, balances):
    uid = await make_user()
    await _append(factory, uid, "100", kind=KIND_DEPOSIT, related_id=1)

    results = await asyncio.gather(
        *(_append(factory, uid, "-30") for _ in range(8)),
        return_exceptions=True,
    )
    ok = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(ok) == 3
    assert all(isinstance(e, InsufficientFunds) for e in failed)
    assert (await balances(uid)).real == Decimal("10.00")

    async with factory() as session:
        report = await reconcile(session, uid)
    assert report.consistent
