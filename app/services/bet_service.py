# app/services/bet_service.py
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.errors import BetLimitExceeded, DrawClosed, InsufficientFunds, NotFound
from app.core.timeutil import utcnow
from app.db.session import unit_of_work
from app.models.bet import Bet, STATUS_OPEN
from app.models.draw import Draw, STATUS_PENDING
from app.models.game_mode import GameMode
from app.schemas.bets import BetIn
from app.schemas.settings import LedgerConfig
from app.services.balance_service import ReserveConflict, try_reserve
from app.services.game_rules import normalize_selection
from app.services.ledger_service import q2, ZERO
from app.services.settings_service import load_ledger_config

logger = logging.getLogger(__name__)


def check_bet_limits(amount: Decimal, potential_win: Decimal, cfg: LedgerConfig) -> None:
    """Stake and payout limits from the admin settings; a zero limit is off."""
    if cfg.min_bet_amount and amount < cfg.min_bet_amount:
        raise BetLimitExceeded(
            f"minimum stake is {cfg.min_bet_amount}", limit="min_bet_amount", allowed=str(cfg.min_bet_amount),
        )
    if cfg.max_bet_amount and amount > cfg.max_bet_amount:
        raise BetLimitExceeded(
            f"maximum stake is {cfg.max_bet_amount}", limit="max_bet_amount", allowed=str(cfg.max_bet_amount),
        )
    if cfg.max_payout and potential_win > cfg.max_payout:
        raise BetLimitExceeded(
            f"potential win {potential_win} exceeds maximum payout {cfg.max_payout}",
            limit="max_payout", allowed=str(cfg.max_payout),
        )


async def _place_once(session: AsyncSession, user_id: int, bet: BetIn, now: datetime) -> Bet:
    cfg = await load_ledger_config(session)

    # 锁期次（共享锁）：结算的状态切换会等下注事务提交
    draw = await session.scalar(
        select(Draw).where(Draw.id == bet.draw_id).with_for_update(read=True)
    )
    if draw is None:
        raise NotFound(f"draw {bet.draw_id} not found")
    if draw.status != STATUS_PENDING:
        raise DrawClosed(f"draw {draw.id} is {draw.status}")
    if now >= draw.scheduled_at - timedelta(seconds=settings.BET_LOCK_AHEAD_SECONDS):
        raise DrawClosed(f"betting on draw {draw.id} is closed")

    mode = await session.get(GameMode, bet.game_mode_id)
    if mode is None or not mode.active:
        raise NotFound(f"game mode {bet.game_mode_id} not available")
    selection = normalize_selection(mode.name, bet.selection)

    amount = q2(bet.amount)
    potential_win = q2(amount * Decimal(str(mode.quotation)))
    check_bet_limits(amount, potential_win, cfg)

    row = Bet(
        user_id=user_id,
        draw_id=draw.id,
        game_mode_id=mode.id,
        selection=selection,
        amount=amount,
        potential_win=potential_win,
        real_amount=ZERO,
        bonus_amount=ZERO,
        status=STATUS_OPEN,
        payout=ZERO,
        created_at=now,
    )
    session.add(row)
    await session.flush()  # 得到 bet.id

    split = await try_reserve(
        session, user_id, amount,
        allow_bonus=bet.use_bonus and cfg.allow_bonus_bets,
        related_id=row.id,
        now=now,
    )
    row.real_amount = split.real_amount
    row.bonus_amount = split.bonus_amount
    row.bonus_id = split.bonus_id
    return row


async def place_bet(
        factory: async_sessionmaker, user_id: int, bet: BetIn, now: Optional[datetime] = None,
) -> Bet:
    """
    Validate, reserve funds and persist the bet as ``open`` in one transaction.
    A reserve conflict reruns the whole transaction.
    """
    now = now or utcnow()
    for attempt in range(1, settings.RESERVE_MAX_ATTEMPTS + 1):
        try:
            async with unit_of_work(factory) as session:
                row = await _place_once(session, user_id, bet, now)
            logger.info(
                "bet placed: id=%s user=%s draw=%s mode=%s sel=%s amount=%s real=%s bonus=%s(#%s)",
                row.id, user_id, row.draw_id, row.game_mode_id, row.selection,
                row.amount, row.real_amount, row.bonus_amount, row.bonus_id,
            )
            return row
        except ReserveConflict:
            logger.info("reserve conflict user=%s attempt=%s", user_id, attempt)
            continue
    raise InsufficientFunds(f"could not reserve {bet.amount} for user {user_id}")


async def bet_history(session: AsyncSession, user_id: int, limit: int = 20) -> List[Bet]:
    rs = await session.execute(
        select(Bet).where(Bet.user_id == user_id).order_by(Bet.id.desc()).limit(limit)
    )
    return list(rs.scalars().all())
