# app/services/ledger_service.py
"""
Ledger store: the only primitive mutation of monetary state.

``append`` writes one immutable LedgerEntry and applies the same delta to the
user's ``wallet_account`` row in the caller's transaction. The account update
is a single conditional UPDATE, so a debit that would take a balance below
zero matches no row and is rejected without a read-modify-write window.
Duplicate effects are rejected by the ``uq_ledger_effect`` unique constraint.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DuplicateTransaction, InsufficientFunds, InvalidAmount, NotFound
from app.core.timeutil import utcnow
from app.models.wallet import (
    WalletAccount, LedgerEntry, LEDGER_KINDS, CLASS_REAL, CLASS_BONUS,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def q2(v) -> Decimal:
    return Decimal(str(v)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


async def ensure_account(session: AsyncSession, user_id: int) -> WalletAccount:
    acc = await session.scalar(select(WalletAccount).where(WalletAccount.user_id == user_id))
    if not acc:
        acc = WalletAccount(user_id=user_id, real_balance=ZERO, bonus_balance=ZERO, version=0)
        session.add(acc)
        await session.flush()
    return acc


async def append(
        session: AsyncSession,
        *,
        user_id: int,
        kind: str,
        balance_class: str,
        amount,
        related_id: Optional[int] = None,
        bonus_id: Optional[int] = None,
        remark: Optional[str] = None,
        created_at: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Append one entry and apply it to the projection.

    Raises DuplicateTransaction when the same (kind, class, related_id) effect
    already exists, InsufficientFunds when a debit exceeds the balance of its
    class, NotFound when the user has no wallet account.
    """
    if kind not in LEDGER_KINDS:
        raise ValueError(f"unknown ledger kind: {kind}")
    if balance_class not in (CLASS_REAL, CLASS_BONUS):
        raise ValueError(f"unknown balance class: {balance_class}")
    if balance_class == CLASS_BONUS and bonus_id is None:
        raise ValueError("bonus-class entries must name their bonus")
    amount = q2(amount)
    if amount == 0:
        raise InvalidAmount("zero-amount ledger entry")

    entry = LedgerEntry(
        user_id=user_id,
        kind=kind,
        amount=amount,
        balance_class=balance_class,
        related_id=related_id,
        bonus_id=bonus_id,
        remark=remark,
        created_at=created_at or utcnow(),
    )
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError as e:
        raise DuplicateTransaction(
            f"{kind}/{balance_class} already applied for #{related_id}",
            kind=kind, related_id=related_id,
        ) from e

    col = WalletAccount.real_balance if balance_class == CLASS_REAL else WalletAccount.bonus_balance
    stmt = update(WalletAccount).where(WalletAccount.user_id == user_id)
    if amount < 0:
        stmt = stmt.where(col >= -amount)
    stmt = stmt.values({col: col + amount, WalletAccount.version: WalletAccount.version + 1})
    res = await session.execute(stmt.execution_options(synchronize_session=False))
    if res.rowcount == 0:
        exists = await session.scalar(select(WalletAccount.id).where(WalletAccount.user_id == user_id))
        if exists is None:
            raise NotFound(f"wallet account of user {user_id} not found")
        raise InsufficientFunds(
            f"{balance_class} balance below {-amount}",
            balance_class=balance_class, amount=str(-amount),
        )
    return entry


async def entries_for(session: AsyncSession, user_id: int, limit: Optional[int] = None) -> List[LedgerEntry]:
    if not limit:
        rs = await session.execute(
            select(LedgerEntry).where(LedgerEntry.user_id == user_id).order_by(LedgerEntry.id.asc())
        )
        return list(rs.scalars().all())
    # newest N, still returned oldest first
    rs = await session.execute(
        select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.id.desc()).limit(limit)
    )
    return list(reversed(rs.scalars().all()))
