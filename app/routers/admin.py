from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import require_admin
from app.core.errors import NotFound
from app.core.timeutil import to_naive
from app.db.session import get_session, get_sessionmaker, unit_of_work
from app.models.draw import Draw, STATUS_PENDING
from app.models.user import User
from app.models.wallet import CLASS_BONUS
from app.schemas.bets import SettlementReport
from app.schemas.draws import DrawIn, DrawOut, DrawResultIn
from app.schemas.settings import LedgerConfig
from app.schemas.wallet import (
    AdjustmentIn, Balances, BonusOut, LedgerEntryOut, ReconcileReport, WalletSummary,
)
from app.services import bonus_service, ledger_service
from app.services.balance_service import adjust_balance, current_balances, reconcile
from app.services.settings_service import load_ledger_config, save_ledger_config
from app.routers.draws import draw_out
from app.tasks.settlement import settle_draw

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


async def _get_user(session: AsyncSession, user_id: int) -> User:
    u = await session.get(User, user_id)
    if u is None:
        raise NotFound(f"user {user_id} not found")
    return u


# ------------------------------
# 期次 / 开奖
# ------------------------------
@router.post("/draws", response_model=DrawOut, status_code=201)
async def create_draw(data: DrawIn, session: AsyncSession = Depends(get_session)):
    d = Draw(name=data.name, scheduled_at=to_naive(data.scheduled_at), status=STATUS_PENDING)
    session.add(d)
    await session.commit()
    await session.refresh(d)
    return draw_out(d)


@router.post("/draws/{draw_id}/result", response_model=SettlementReport)
async def submit_result(
        draw_id: int, data: DrawResultIn, factory: async_sessionmaker = Depends(get_sessionmaker),
):
    # 已开奖的期次由异常处理器返回 draw_already_settled
    return await settle_draw(factory, draw_id, data.result)


# ------------------------------
# 用户钱包
# ------------------------------
@router.get("/users/{user_id}/wallet", response_model=WalletSummary)
async def user_wallet(user_id: int, session: AsyncSession = Depends(get_session)):
    await _get_user(session, user_id)
    return WalletSummary(
        balances=await current_balances(session, user_id),
        bonuses=[BonusOut.model_validate(b) for b in await bonus_service.bonus_summary(session, user_id)],
    )


@router.get("/users/{user_id}/ledger", response_model=List[LedgerEntryOut])
async def user_ledger(
        user_id: int,
        limit: int = Query(100, ge=1, le=1000),
        session: AsyncSession = Depends(get_session),
):
    await _get_user(session, user_id)
    rows = await ledger_service.entries_for(session, user_id, limit=limit)
    return [LedgerEntryOut.model_validate(r) for r in rows]


@router.get("/users/{user_id}/reconcile", response_model=ReconcileReport)
async def user_reconcile(user_id: int, session: AsyncSession = Depends(get_session)):
    await _get_user(session, user_id)
    return await reconcile(session, user_id)


@router.post("/users/{user_id}/adjust", response_model=Balances)
async def adjust(
        user_id: int,
        data: AdjustmentIn,
        admin: User = Depends(require_admin),
        factory: async_sessionmaker = Depends(get_sessionmaker),
):
    if data.balance_class == CLASS_BONUS and data.bonus_id is None:
        raise HTTPException(status_code=400, detail="bonus adjustments must name a bonus")
    async with unit_of_work(factory) as session:
        await _get_user(session, user_id)
        return await adjust_balance(
            session, user_id, data.balance_class, data.amount,
            reason=f"{data.reason} (by {admin.username})",
            bonus_id=data.bonus_id,
        )


@router.post("/bonuses/expire")
async def expire_bonuses(factory: async_sessionmaker = Depends(get_sessionmaker)):
    expired = await bonus_service.expire_due_bonuses(factory)
    return {"expired": expired}


# ------------------------------
# 系统设置
# ------------------------------
@router.get("/settings", response_model=LedgerConfig)
async def get_settings(session: AsyncSession = Depends(get_session)):
    return await load_ledger_config(session)


@router.put("/settings", response_model=LedgerConfig)
async def put_settings(data: LedgerConfig, factory: async_sessionmaker = Depends(get_sessionmaker)):
    async with unit_of_work(factory) as session:
        return await save_ledger_config(session, data)
