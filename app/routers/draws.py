from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.core.timeutil import to_local_str
from app.db.session import get_session
from app.models.draw import Draw
from app.models.game_mode import GameMode
from app.schemas.draws import DrawOut, GameModeOut

router = APIRouter(prefix="/api/draws", tags=["draws"])


def draw_out(d: Draw) -> DrawOut:
    return DrawOut.model_validate(d).model_copy(update={"local_time": to_local_str(d.scheduled_at)})


@router.get("/game-modes", response_model=List[GameModeOut])
async def game_modes(session: AsyncSession = Depends(get_session)):
    rs = await session.execute(
        select(GameMode).where(GameMode.active.is_(True)).order_by(GameMode.sort_order.asc())
    )
    return [GameModeOut.model_validate(m) for m in rs.scalars().all()]


@router.get("", response_model=List[DrawOut])
async def list_draws(
        status: Optional[str] = Query(None, pattern="^(pending|settled)$"),
        limit: int = Query(20, ge=1, le=200),
        session: AsyncSession = Depends(get_session),
):
    q = select(Draw)
    if status:
        q = q.where(Draw.status == status)
    rs = await session.execute(q.order_by(Draw.scheduled_at.desc()).limit(limit))
    return [draw_out(d) for d in rs.scalars().all()]


@router.get("/{draw_id}", response_model=DrawOut)
async def get_draw(draw_id: int, session: AsyncSession = Depends(get_session)):
    d = await session.get(Draw, draw_id)
    if d is None:
        raise NotFound(f"draw {draw_id} not found")
    return draw_out(d)
