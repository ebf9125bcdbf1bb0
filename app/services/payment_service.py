# app/services/payment_service.py
"""
Deposit / withdrawal processor.

Gateway notifications are at-least-once. The (gateway_id, external_id)
unique constraint on payment_transaction decides which delivery applies the
effect: the first insert wins, a redelivery either moves a ``pending`` row
forward with a conditional UPDATE or is reported as DuplicateTransaction.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import (
    DuplicateTransaction, FeatureDisabled, GatewayRejected, InsufficientFunds, InvalidAmount,
    NotFound, WithdrawalAlreadyPending,
)
from app.core.timeutil import utcnow
from app.db.session import unit_of_work
from app.models.payment import (
    PaymentTransaction, TYPE_DEPOSIT, TYPE_WITHDRAWAL,
    STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED,
)
from app.models.wallet import KIND_DEPOSIT, KIND_WITHDRAWAL, KIND_WITHDRAWAL_REVERSAL, CLASS_REAL
from app.schemas.payment import DepositNotification, DepositResult, PaymentOut
from app.services import bonus_service, ledger_service
from app.services.balance_service import current_balances
from app.services.ledger_service import q2
from app.services.payout_gateway import PayoutGateway, NullPayoutGateway
from app.services.settings_service import load_ledger_config

logger = logging.getLogger(__name__)


# ------------------------------
# 存款
# ------------------------------
async def _credit_deposit(session: AsyncSession, tx: PaymentTransaction, now: datetime) -> None:
    await ledger_service.append(
        session,
        user_id=tx.user_id,
        kind=KIND_DEPOSIT,
        balance_class=CLASS_REAL,
        amount=tx.amount,
        related_id=tx.id,
        remark=f"{tx.gateway_id}:{tx.external_id}",
        created_at=now,
    )


async def _apply_redelivery(
        factory: async_sessionmaker, note: DepositNotification, now: datetime,
) -> Tuple[PaymentTransaction, bool, Optional[int]]:
    async with unit_of_work(factory) as session:
        tx = await session.scalar(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.gateway_id == note.gateway_id,
                PaymentTransaction.external_id == note.external_id,
            )
            .with_for_update()
        )
        if tx is None:
            raise NotFound(f"transaction {note.gateway_id}/{note.external_id} vanished")
        if tx.type != TYPE_DEPOSIT or tx.user_id != note.user_id:
            logger.error(
                "notification %s/%s does not match transaction %s (type=%s user=%s)",
                note.gateway_id, note.external_id, tx.id, tx.type, tx.user_id,
            )
            raise DuplicateTransaction(f"idempotency key already used by transaction {tx.id}")
        if note.status == STATUS_PENDING or tx.status != STATUS_PENDING:
            raise DuplicateTransaction(
                f"deposit {tx.id} already {tx.status}", transaction_id=tx.id, status=tx.status,
            )

        res = await session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == tx.id, PaymentTransaction.status == STATUS_PENDING)
            .values(status=note.status, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise DuplicateTransaction(f"deposit {tx.id} resolved concurrently")
        credited, bonus_id = False, None
        if note.status == STATUS_APPROVED:
            if q2(note.amount) != q2(tx.amount):
                logger.warning("deposit %s approved with amount %s, recorded %s", tx.id, note.amount, tx.amount)
            await _credit_deposit(session, tx, now)
            credited = True
            bonus_id = await _grant_first_deposit_bonus(session, tx, now)
        await session.refresh(tx)
        return tx, credited, bonus_id


async def _grant_first_deposit_bonus(session: AsyncSession, tx: PaymentTransaction, now: datetime) -> Optional[int]:
    # 与入账同一事务：授予失败则整笔回滚，网关重推时重新判断
    cfg = await load_ledger_config(session)
    try:
        async with session.begin_nested():
            bonus = await bonus_service.grant_first_deposit_bonus(
                session, tx.user_id, tx.id, tx.amount, cfg, now=now,
            )
    except DuplicateTransaction:
        logger.info("first-deposit bonus of user %s already granted", tx.user_id)
        return None
    return bonus.id if bonus else None


async def process_deposit(
        factory: async_sessionmaker, note: DepositNotification, now: Optional[datetime] = None,
) -> DepositResult:
    """
    Ingest one deposit notification.

    Raises DuplicateTransaction when the notification was already applied
    (callers acknowledge it as success).
    """
    now = now or utcnow()
    try:
        async with unit_of_work(factory) as session:
            tx = PaymentTransaction(
                user_id=note.user_id,
                amount=q2(note.amount),
                type=TYPE_DEPOSIT,
                status=note.status,
                gateway_id=note.gateway_id,
                external_id=note.external_id,
                created_at=now,
                resolved_at=None if note.status == STATUS_PENDING else now,
            )
            session.add(tx)
            await session.flush()
            credited, bonus_id = False, None
            if note.status == STATUS_APPROVED:
                await _credit_deposit(session, tx, now)
                credited = True
                bonus_id = await _grant_first_deposit_bonus(session, tx, now)
    except IntegrityError:
        # 幂等键已存在：重复推送或状态推进
        tx, credited, bonus_id = await _apply_redelivery(factory, note, now)

    logger.info(
        "deposit %s/%s user=%s amount=%s status=%s credited=%s bonus=%s",
        note.gateway_id, note.external_id, note.user_id, tx.amount, tx.status, credited, bonus_id,
    )
    return DepositResult(transaction=PaymentOut.model_validate(tx), credited=credited, bonus_id=bonus_id)


# ------------------------------
# 提现
# ------------------------------
async def pending_withdrawal(session: AsyncSession, user_id: int) -> Optional[PaymentTransaction]:
    return await session.scalar(
        select(PaymentTransaction).where(PaymentTransaction.pending_user_id == user_id)
    )


async def request_withdrawal(
        factory: async_sessionmaker,
        user_id: int,
        amount,
        gateway_id: str = "default",
        gateway: Optional[PayoutGateway] = None,
        now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Debit real funds immediately and hand the payout to the gateway.
    Bonus funds are never withdrawable.
    """
    now = now or utcnow()
    amount = q2(amount)
    if amount <= 0:
        raise InvalidAmount(f"withdrawal amount must be at least 0.01, got {amount}")
    try:
        async with unit_of_work(factory) as session:
            cfg = await load_ledger_config(session)
            if not cfg.allow_withdrawals:
                raise FeatureDisabled("withdrawals are disabled")
            if await pending_withdrawal(session, user_id):
                raise WithdrawalAlreadyPending(f"user {user_id} already has a pending withdrawal")
            balances = await current_balances(session, user_id)
            if balances.real < amount:
                raise InsufficientFunds(
                    f"withdrawal {amount} exceeds withdrawable balance {balances.real}",
                    real=str(balances.real), bonus=str(balances.bonus),
                )
            tx = PaymentTransaction(
                user_id=user_id,
                amount=amount,
                type=TYPE_WITHDRAWAL,
                status=STATUS_PENDING,
                gateway_id=gateway_id,
                external_id=uuid.uuid4().hex,
                pending_user_id=user_id,
                created_at=now,
            )
            session.add(tx)
            await session.flush()
            await ledger_service.append(
                session,
                user_id=user_id,
                kind=KIND_WITHDRAWAL,
                balance_class=CLASS_REAL,
                amount=-amount,
                related_id=tx.id,
                created_at=now,
            )
    except IntegrityError as e:
        # lost the race on pending_user_id
        raise WithdrawalAlreadyPending(f"user {user_id} already has a pending withdrawal") from e
    logger.info("withdrawal %s accepted: user=%s amount=%s", tx.id, user_id, amount)

    gateway = gateway or NullPayoutGateway()
    try:
        await gateway.submit_payout(tx)
    except GatewayRejected:
        logger.warning("withdrawal %s rejected by gateway, reversing", tx.id)
        await resolve_withdrawal(factory, tx.gateway_id, tx.external_id, STATUS_REJECTED, now=now)
        raise
    return tx


async def resolve_withdrawal(
        factory: async_sessionmaker,
        gateway_id: str,
        external_id: str,
        status: str,
        now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Apply the gateway's outcome exactly once: ``approved`` keeps the debit,
    ``rejected`` appends a reversing credit.
    """
    if status not in (STATUS_APPROVED, STATUS_REJECTED):
        raise ValueError(f"unsupported withdrawal outcome: {status}")
    now = now or utcnow()
    async with unit_of_work(factory) as session:
        tx = await session.scalar(
            select(PaymentTransaction).where(
                PaymentTransaction.gateway_id == gateway_id,
                PaymentTransaction.external_id == external_id,
                PaymentTransaction.type == TYPE_WITHDRAWAL,
            )
        )
        if tx is None:
            raise NotFound(f"withdrawal {gateway_id}/{external_id} not found")
        res = await session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == tx.id, PaymentTransaction.status == STATUS_PENDING)
            .values(status=status, pending_user_id=None, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise DuplicateTransaction(f"withdrawal {tx.id} already resolved", transaction_id=tx.id)
        if status == STATUS_REJECTED:
            await ledger_service.append(
                session,
                user_id=tx.user_id,
                kind=KIND_WITHDRAWAL_REVERSAL,
                balance_class=CLASS_REAL,
                amount=tx.amount,
                related_id=tx.id,
                remark="gateway rejected",
                created_at=now,
            )
        await session.refresh(tx)
    logger.info("withdrawal %s %s: user=%s amount=%s", tx.id, status, tx.user_id, tx.amount)
    return tx
