from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import get_current_user
from app.db.session import get_session, get_sessionmaker
from app.models.user import User
from app.schemas.bets import BetIn, BetOut
from app.services.bet_service import bet_history, place_bet

router = APIRouter(prefix="/api/bets", tags=["bets"])


@router.post("/place", response_model=BetOut, status_code=201)
async def place(
        payload: BetIn,
        current_user: User = Depends(get_current_user),
        factory: async_sessionmaker = Depends(get_sessionmaker),
):
    """
    下注：
      - 赔率以 game_mode 为准（不信任前端）
      - 资金优先使用红利（可关闭），不足部分扣真钱
      - 扣款与建单同一事务
    """
    bet = await place_bet(factory, current_user.id, payload)
    return BetOut.model_validate(bet)


@router.get("/history", response_model=List[BetOut])
async def history(
        limit: int = Query(20, ge=1, le=200),
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    rows = await bet_history(session, current_user.id, limit=limit)
    return [BetOut.model_validate(b) for b in rows]
