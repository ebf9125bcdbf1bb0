from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import get_current_user
from app.db.session import get_session, get_sessionmaker
from app.models.user import User
from app.schemas.payment import PaymentOut, WithdrawalIn
from app.schemas.wallet import Balances, BonusOut, LedgerEntryOut, WalletSummary
from app.services import bonus_service, ledger_service, payment_service
from app.services.balance_service import current_balances
from app.services.payout_gateway import PayoutGateway, get_payout_gateway

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get("/balances", response_model=Balances)
async def balances(
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    return await current_balances(session, current_user.id)


@router.get("/summary", response_model=WalletSummary)
async def summary(
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    return WalletSummary(
        balances=await current_balances(session, current_user.id),
        bonuses=[BonusOut.model_validate(b) for b in await bonus_service.bonus_summary(session, current_user.id)],
    )


@router.get("/ledger", response_model=List[LedgerEntryOut])
async def ledger(
        limit: int = Query(50, ge=1, le=500),
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    rows = await ledger_service.entries_for(session, current_user.id, limit=limit)
    return [LedgerEntryOut.model_validate(r) for r in rows]


@router.get("/bonuses", response_model=List[BonusOut])
async def bonuses(
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    rows = await bonus_service.bonus_summary(session, current_user.id)
    return [BonusOut.model_validate(b) for b in rows]


@router.get("/withdrawal", response_model=Optional[PaymentOut])
async def pending_withdrawal(
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    tx = await payment_service.pending_withdrawal(session, current_user.id)
    return PaymentOut.model_validate(tx) if tx else None


@router.post("/withdraw", response_model=PaymentOut, status_code=201)
async def withdraw(
        payload: WithdrawalIn,
        current_user: User = Depends(get_current_user),
        factory: async_sessionmaker = Depends(get_sessionmaker),
        gateway: PayoutGateway = Depends(get_payout_gateway),
):
    """
    提现：
      - 只能提真钱余额（红利不可提）
      - 同一用户同时只允许一笔待处理提现
      - 先扣款，网关拒绝时自动冲回
    """
    tx = await payment_service.request_withdrawal(
        factory, current_user.id, payload.amount, gateway_id=payload.gateway_id, gateway=gateway,
    )
    return PaymentOut.model_validate(tx)
