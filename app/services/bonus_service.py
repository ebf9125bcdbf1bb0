# app/services/bonus_service.py
"""
Bonus engine.

A bonus is ``active`` until its rollover requirement is met (``completed``,
remaining funds released to the real balance) or it passes ``expires_at``
(``expired``, remaining funds forfeited). Every change of ``remaining_amount``
is paired with a bonus-class ledger entry in the same transaction, so the
account's ``bonus_balance`` always equals the sum over active bonuses.
Status changes are conditional UPDATEs on ``status = 'active'``; terminal
states never revert.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import DuplicateTransaction, InsufficientFunds, NotFound
from app.core.timeutil import utcnow
from app.db.session import unit_of_work
from app.models.bonus import (
    Bonus, TYPE_SIGNUP, TYPE_FIRST_DEPOSIT,
    STATUS_ACTIVE, STATUS_COMPLETED, STATUS_EXPIRED,
)
from app.models.payment import PaymentTransaction, TYPE_DEPOSIT, STATUS_APPROVED
from app.models.wallet import (
    KIND_BONUS_GRANT, KIND_BONUS_CONSUME, KIND_BONUS_EXPIRE,
    KIND_BET_DEBIT, KIND_BET_CREDIT, KIND_ADJUSTMENT,
    CLASS_REAL, CLASS_BONUS,
)
from app.schemas.settings import LedgerConfig
from app.services import ledger_service
from app.services.ledger_service import q2, ZERO

logger = logging.getLogger(__name__)


# ------------------------------
# 发放
# ------------------------------
async def _grant(
        session: AsyncSession,
        *,
        user_id: int,
        bonus_type: str,
        amount: Decimal,
        rollover: Decimal,
        expiration_days: int,
        related_transaction_id: Optional[int],
        now: datetime,
) -> Bonus:
    amount = q2(amount)
    bonus = Bonus(
        user_id=user_id,
        bonus_type=bonus_type,
        amount=amount,
        remaining_amount=amount,
        rollover_requirement=q2(amount * Decimal(str(rollover))),
        rollover_progress=ZERO,
        status=STATUS_ACTIVE,
        expires_at=now + timedelta(days=expiration_days),
        related_transaction_id=related_transaction_id,
        created_at=now,
    )
    session.add(bonus)
    try:
        await session.flush()
    except IntegrityError as e:
        raise DuplicateTransaction(f"{bonus_type} bonus already granted to user {user_id}") from e

    await ledger_service.append(
        session,
        user_id=user_id,
        kind=KIND_BONUS_GRANT,
        balance_class=CLASS_BONUS,
        amount=amount,
        related_id=bonus.id,
        bonus_id=bonus.id,
        remark=f"{bonus_type} bonus",
        created_at=now,
    )
    logger.info(
        "bonus granted: user=%s type=%s amount=%s rollover=%s expires=%s",
        user_id, bonus_type, amount, bonus.rollover_requirement, bonus.expires_at,
    )
    if bonus.rollover_requirement <= 0:
        await complete_bonus(session, bonus.id, now=now)
    return bonus


async def grant_signup_bonus(
        session: AsyncSession, user_id: int, cfg: LedgerConfig, now: Optional[datetime] = None,
) -> Optional[Bonus]:
    if not cfg.signup_bonus_enabled or cfg.signup_bonus_amount <= 0:
        return None
    return await _grant(
        session,
        user_id=user_id,
        bonus_type=TYPE_SIGNUP,
        amount=cfg.signup_bonus_amount,
        rollover=cfg.signup_bonus_rollover,
        expiration_days=cfg.signup_bonus_expiration_days,
        related_transaction_id=None,
        now=now or utcnow(),
    )


def first_deposit_bonus_amount(deposit_amount: Decimal, cfg: LedgerConfig) -> Decimal:
    raw = Decimal(str(deposit_amount)) * cfg.first_deposit_bonus_percentage / Decimal("100")
    return q2(min(raw, cfg.first_deposit_bonus_max_amount))


async def grant_first_deposit_bonus(
        session: AsyncSession,
        user_id: int,
        transaction_id: int,
        deposit_amount: Decimal,
        cfg: LedgerConfig,
        now: Optional[datetime] = None,
) -> Optional[Bonus]:
    """
    Grant the first-deposit bonus when ``transaction_id`` is the user's
    earliest approved deposit. A concurrent duplicate grant loses on the
    (user_id, bonus_type) unique constraint and raises DuplicateTransaction.
    """
    if not cfg.first_deposit_bonus_enabled:
        return None
    first_id = await session.scalar(
        select(func.min(PaymentTransaction.id)).where(
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.type == TYPE_DEPOSIT,
            PaymentTransaction.status == STATUS_APPROVED,
        )
    )
    if first_id != transaction_id:
        return None
    existing = await session.scalar(
        select(Bonus.id).where(Bonus.user_id == user_id, Bonus.bonus_type == TYPE_FIRST_DEPOSIT)
    )
    if existing:
        return None
    amount = first_deposit_bonus_amount(deposit_amount, cfg)
    if amount <= 0:
        return None
    return await _grant(
        session,
        user_id=user_id,
        bonus_type=TYPE_FIRST_DEPOSIT,
        amount=amount,
        rollover=cfg.first_deposit_bonus_rollover,
        expiration_days=cfg.first_deposit_bonus_expiration_days,
        related_transaction_id=transaction_id,
        now=now or utcnow(),
    )


# ------------------------------
# 资金使用
# ------------------------------
async def eligible_bonuses(session: AsyncSession, user_id: int, now: Optional[datetime] = None) -> List[Bonus]:
    now = now or utcnow()
    rs = await session.execute(
        select(Bonus)
        .where(
            Bonus.user_id == user_id,
            Bonus.status == STATUS_ACTIVE,
            Bonus.remaining_amount > 0,
            Bonus.expires_at >= now,
        )
        .order_by(Bonus.expires_at.asc(), Bonus.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(rs.scalars().all())


def choose_funding_bonus(candidates: Iterable[Bonus], amount: Decimal) -> Optional[Bonus]:
    """
    Earliest-expiring bonus that covers the whole stake; otherwise the one
    with the largest remaining amount. ``candidates`` come ordered by expiry.
    """
    candidates = list(candidates)
    if not candidates:
        return None
    for b in candidates:
        if b.remaining_amount >= amount:
            return b
    return max(candidates, key=lambda b: (b.remaining_amount, -b.id))


async def consume(
        session: AsyncSession, bonus_id: int, user_id: int, amount: Decimal, related_id: int,
        now: Optional[datetime] = None,
) -> None:
    amount = q2(amount)
    res = await session.execute(
        update(Bonus)
        .where(
            Bonus.id == bonus_id,
            Bonus.status == STATUS_ACTIVE,
            Bonus.remaining_amount >= amount,
        )
        .values(remaining_amount=Bonus.remaining_amount - amount)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise InsufficientFunds(f"bonus {bonus_id} cannot cover {amount}")
    await ledger_service.append(
        session,
        user_id=user_id,
        kind=KIND_BET_DEBIT,
        balance_class=CLASS_BONUS,
        amount=-amount,
        related_id=related_id,
        bonus_id=bonus_id,
        created_at=now,
    )


# ------------------------------
# 结算侧：派彩与流水进度
# ------------------------------
async def credit_winnings(
        session: AsyncSession, bonus_id: int, user_id: int, amount: Decimal, bet_id: int,
        now: Optional[datetime] = None,
) -> Decimal:
    """
    Credit the bonus-funded share of a payout back to the funding bonus.

    Returns the part that must go to the real balance instead: all of it when
    the bonus already completed, nothing when it was credited or the bonus
    expired (forfeited).
    """
    amount = q2(amount)
    res = await session.execute(
        update(Bonus)
        .where(Bonus.id == bonus_id, Bonus.status == STATUS_ACTIVE)
        .values(
            amount=Bonus.amount + amount,
            remaining_amount=Bonus.remaining_amount + amount,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount:
        await ledger_service.append(
            session,
            user_id=user_id,
            kind=KIND_BET_CREDIT,
            balance_class=CLASS_BONUS,
            amount=amount,
            related_id=bet_id,
            bonus_id=bonus_id,
            created_at=now,
        )
        return ZERO

    status = await session.scalar(select(Bonus.status).where(Bonus.id == bonus_id))
    if status == STATUS_COMPLETED:
        return amount
    logger.warning("bonus %s is %s, winnings %s of bet %s forfeited", bonus_id, status, amount, bet_id)
    return ZERO


async def record_wager(
        session: AsyncSession, bonus_id: int, amount: Decimal, now: Optional[datetime] = None,
) -> Optional[Bonus]:
    """Advance rollover progress, capped at the requirement; complete when met."""
    amount = q2(amount)
    progressed = Bonus.rollover_progress + amount
    res = await session.execute(
        update(Bonus)
        .where(Bonus.id == bonus_id, Bonus.status == STATUS_ACTIVE)
        .values(
            rollover_progress=case(
                (progressed >= Bonus.rollover_requirement, Bonus.rollover_requirement),
                else_=progressed,
            )
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return None
    bonus = await session.get(Bonus, bonus_id, populate_existing=True)
    if bonus.rollover_progress >= bonus.rollover_requirement:
        return await complete_bonus(session, bonus_id, now=now) or bonus
    return bonus


async def complete_bonus(session: AsyncSession, bonus_id: int, now: Optional[datetime] = None) -> Optional[Bonus]:
    """active -> completed; the remaining amount is reclassified as real."""
    now = now or utcnow()
    bonus = await session.get(Bonus, bonus_id, with_for_update=True, populate_existing=True)
    if bonus is None or bonus.status != STATUS_ACTIVE:
        return None
    remaining = q2(bonus.remaining_amount)
    res = await session.execute(
        update(Bonus)
        .where(Bonus.id == bonus_id, Bonus.status == STATUS_ACTIVE)
        .values(status=STATUS_COMPLETED, remaining_amount=ZERO, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return None
    if remaining > 0:
        await ledger_service.append(
            session, user_id=bonus.user_id, kind=KIND_BONUS_CONSUME, balance_class=CLASS_BONUS,
            amount=-remaining, related_id=bonus_id, bonus_id=bonus_id,
            remark="rollover met", created_at=now,
        )
        await ledger_service.append(
            session, user_id=bonus.user_id, kind=KIND_BONUS_CONSUME, balance_class=CLASS_REAL,
            amount=remaining, related_id=bonus_id,
            remark="rollover met", created_at=now,
        )
    await session.refresh(bonus)
    logger.info("bonus %s completed: user=%s released=%s", bonus_id, bonus.user_id, remaining)
    return bonus


async def release_matured(session: AsyncSession, user_id: int, now: Optional[datetime] = None) -> List[int]:
    """Complete active bonuses whose rollover is already met before they are spent."""
    rs = await session.execute(
        select(Bonus.id).where(
            Bonus.user_id == user_id,
            Bonus.status == STATUS_ACTIVE,
            Bonus.rollover_progress >= Bonus.rollover_requirement,
        )
    )
    released = []
    for bonus_id in rs.scalars().all():
        if await complete_bonus(session, bonus_id, now=now):
            released.append(bonus_id)
    return released


# ------------------------------
# 过期
# ------------------------------
async def expire_bonus(session: AsyncSession, bonus_id: int, now: Optional[datetime] = None) -> Optional[Bonus]:
    now = now or utcnow()
    bonus = await session.get(Bonus, bonus_id, with_for_update=True, populate_existing=True)
    if bonus is None or bonus.status != STATUS_ACTIVE or bonus.expires_at >= now:
        return None
    remaining = q2(bonus.remaining_amount)
    res = await session.execute(
        update(Bonus)
        .where(Bonus.id == bonus_id, Bonus.status == STATUS_ACTIVE, Bonus.expires_at < now)
        .values(status=STATUS_EXPIRED, remaining_amount=ZERO)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return None
    if remaining > 0:
        await ledger_service.append(
            session, user_id=bonus.user_id, kind=KIND_BONUS_EXPIRE, balance_class=CLASS_BONUS,
            amount=-remaining, related_id=bonus_id, bonus_id=bonus_id,
            remark="expired", created_at=now,
        )
    await session.refresh(bonus)
    logger.info("bonus %s expired: user=%s forfeited=%s", bonus_id, bonus.user_id, remaining)
    return bonus


async def expire_due_bonuses(factory: async_sessionmaker, now: Optional[datetime] = None) -> List[int]:
    """Periodic sweep; one transaction per bonus."""
    now = now or utcnow()
    async with factory() as session:
        rs = await session.execute(
            select(Bonus.id)
            .where(Bonus.status == STATUS_ACTIVE, Bonus.expires_at < now)
            .order_by(Bonus.id.asc())
        )
        due = list(rs.scalars().all())

    expired = []
    for bonus_id in due:
        try:
            async with unit_of_work(factory) as session:
                if await expire_bonus(session, bonus_id, now=now):
                    expired.append(bonus_id)
        except Exception as e:
            logger.exception("expire bonus failed bonus_id=%s: %s", bonus_id, e)
            continue
    return expired


# ------------------------------
# 查询 / 管理
# ------------------------------
async def bonus_summary(session: AsyncSession, user_id: int) -> List[Bonus]:
    rs = await session.execute(
        select(Bonus).where(Bonus.user_id == user_id).order_by(Bonus.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(rs.scalars().all())


async def adjust_bonus(
        session: AsyncSession, bonus_id: int, amount: Decimal, reason: str, now: Optional[datetime] = None,
) -> Bonus:
    """Admin override of an active bonus, through the ledger."""
    amount = q2(amount)
    bonus = await session.get(Bonus, bonus_id, with_for_update=True, populate_existing=True)
    if bonus is None:
        raise NotFound(f"bonus {bonus_id} not found")
    values = {Bonus.remaining_amount: Bonus.remaining_amount + amount}
    if amount > 0:
        values[Bonus.amount] = Bonus.amount + amount
    res = await session.execute(
        update(Bonus)
        .where(
            Bonus.id == bonus_id,
            Bonus.status == STATUS_ACTIVE,
            Bonus.remaining_amount + amount >= 0,
        )
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise InsufficientFunds(f"bonus {bonus_id} is not active or cannot absorb {amount}")
    await ledger_service.append(
        session, user_id=bonus.user_id, kind=KIND_ADJUSTMENT, balance_class=CLASS_BONUS,
        amount=amount, bonus_id=bonus_id, remark=reason, created_at=now,
    )
    await session.refresh(bonus)
    return bonus
