# app/services/balance_service.py
"""
Balance projector.

Balances are read from the ``wallet_account`` projection that
``ledger_service.append`` maintains; ``reconcile`` folds the ledger and
checks the projection against it. ``try_reserve`` is the check-and-debit used
by bet placement: the debit itself is a conditional UPDATE, so two concurrent
reservations cannot both pass against the same insufficient balance.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InsufficientFunds, InvalidAmount, NotFound
from app.core.timeutil import utcnow
from app.models.bonus import Bonus, STATUS_ACTIVE
from app.models.wallet import (
    WalletAccount, LedgerEntry, KIND_BET_DEBIT, KIND_ADJUSTMENT, CLASS_REAL, CLASS_BONUS,
)
from app.schemas.wallet import Balances, FundingSplit, ReconcileReport
from app.services import bonus_service, ledger_service
from app.services.ledger_service import q2, ZERO

logger = logging.getLogger(__name__)


class ReserveConflict(InsufficientFunds):
    """The snapshot allowed the debit but the conditional update did not; retry the operation."""
    code = "reserve_conflict"


async def current_balances(session: AsyncSession, user_id: int) -> Balances:
    row = (
        await session.execute(
            select(WalletAccount.real_balance, WalletAccount.bonus_balance)
            .where(WalletAccount.user_id == user_id)
        )
    ).first()
    if row is None:
        raise NotFound(f"wallet account of user {user_id} not found")
    return Balances(real=q2(row.real_balance), bonus=q2(row.bonus_balance))


async def try_reserve(
        session: AsyncSession,
        user_id: int,
        amount,
        allow_bonus: bool,
        related_id: int,
        now: Optional[datetime] = None,
) -> FundingSplit:
    """
    Debit ``amount`` for the bet ``related_id``, bonus funds first.

    Raises InsufficientFunds when real + eligible bonus cannot cover the
    stake, ReserveConflict when a concurrent debit won between the snapshot
    and the update (the caller reruns the whole unit of work).
    """
    now = now or utcnow()
    amount = q2(amount)
    if amount <= 0:
        raise InvalidAmount(f"stake must be at least 0.01, got {amount}")

    # rollover already met: reclassify before spending further
    await bonus_service.release_matured(session, user_id, now=now)

    balances = await current_balances(session, user_id)
    bonus = None
    bonus_part = ZERO
    if allow_bonus:
        bonus = bonus_service.choose_funding_bonus(
            await bonus_service.eligible_bonuses(session, user_id, now=now), amount
        )
        if bonus is not None:
            bonus_part = min(q2(bonus.remaining_amount), amount)
    real_part = amount - bonus_part

    if real_part > balances.real:
        raise InsufficientFunds(
            f"stake {amount} exceeds available funds",
            real=str(balances.real), bonus=str(bonus_part), amount=str(amount),
        )

    try:
        if bonus_part > 0:
            await bonus_service.consume(session, bonus.id, user_id, bonus_part, related_id, now=now)
        if real_part > 0:
            await ledger_service.append(
                session,
                user_id=user_id,
                kind=KIND_BET_DEBIT,
                balance_class=CLASS_REAL,
                amount=-real_part,
                related_id=related_id,
                created_at=now,
            )
    except ReserveConflict:
        raise
    except InsufficientFunds as e:
        raise ReserveConflict(str(e)) from e

    return FundingSplit(
        real_amount=real_part,
        bonus_amount=bonus_part,
        bonus_id=bonus.id if bonus_part > 0 else None,
    )


async def adjust_balance(
        session: AsyncSession,
        user_id: int,
        balance_class: str,
        amount: Decimal,
        reason: str,
        bonus_id: Optional[int] = None,
        now: Optional[datetime] = None,
) -> Balances:
    """Admin override; goes through the same ledger path as everything else."""
    if balance_class == CLASS_BONUS:
        if bonus_id is None:
            raise ValueError("bonus adjustments must name a bonus")
        bonus = await session.get(Bonus, bonus_id)
        if bonus is None or bonus.user_id != user_id:
            raise NotFound(f"bonus {bonus_id} not found for user {user_id}")
        await bonus_service.adjust_bonus(session, bonus_id, amount, reason, now=now)
    else:
        await ledger_service.append(
            session,
            user_id=user_id,
            kind=KIND_ADJUSTMENT,
            balance_class=CLASS_REAL,
            amount=amount,
            remark=reason,
            created_at=now,
        )
    logger.info("admin adjustment: user=%s class=%s amount=%s reason=%s", user_id, balance_class, amount, reason)
    return await current_balances(session, user_id)


async def reconcile(session: AsyncSession, user_id: int) -> ReconcileReport:
    """Fold the ledger and compare with the projection and the active bonuses."""
    row = (
        await session.execute(
            select(
                func.coalesce(func.sum(case((LedgerEntry.balance_class == CLASS_REAL, LedgerEntry.amount), else_=0)), 0),
                func.coalesce(func.sum(case((LedgerEntry.balance_class == CLASS_BONUS, LedgerEntry.amount), else_=0)), 0),
                func.count(LedgerEntry.id),
            ).where(LedgerEntry.user_id == user_id)
        )
    ).one()
    active_sum = await session.scalar(
        select(func.coalesce(func.sum(Bonus.remaining_amount), 0))
        .where(Bonus.user_id == user_id, Bonus.status == STATUS_ACTIVE)
    )
    balances = await current_balances(session, user_id)
    report = ReconcileReport(
        user_id=user_id,
        ledger_real=q2(row[0]),
        ledger_bonus=q2(row[1]),
        projected_real=balances.real,
        projected_bonus=balances.bonus,
        active_bonus_sum=q2(active_sum),
        entries=int(row[2]),
    )
    if not report.consistent:
        logger.error("ledger/projection mismatch: %s", report.model_dump())
    return report
