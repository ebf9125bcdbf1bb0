# app/tasks/settlement.py
from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.errors import DrawAlreadySettled, NotFound
from app.core.timeutil import utcnow
from app.db.session import AsyncSessionLocal, unit_of_work
from app.models.bet import Bet, STATUS_OPEN, STATUS_WON, STATUS_LOST
from app.models.draw import Draw, STATUS_PENDING, STATUS_SETTLED
from app.models.game_mode import GameMode
from app.models.wallet import KIND_BET_CREDIT, CLASS_REAL
from app.schemas.bets import SettlementReport
from app.services import bonus_service, ledger_service
from app.services.game_rules import is_hit, normalize_result
from app.services.ledger_service import q2, ZERO

logger = logging.getLogger(__name__)

BATCH_LIMIT = 200      # 每轮补结算最多处理 N 笔


# ------------------------------
# 派彩拆分：按下注时的资金来源比例
# ------------------------------
def split_payout(bet: Bet) -> tuple[Decimal, Decimal]:
    """(real share, bonus share) of potential_win, proportional to the funding split."""
    payout = q2(bet.potential_win)
    bonus_amount = q2(bet.bonus_amount or 0)
    if bonus_amount <= 0 or not bet.bonus_id:
        return payout, ZERO
    if bonus_amount >= q2(bet.amount):
        return ZERO, payout
    bonus_share = q2(payout * bonus_amount / q2(bet.amount))
    return payout - bonus_share, bonus_share


# ------------------------------
# 结算一笔注单（单事务）
# ------------------------------
async def _settle_one_bet(session: AsyncSession, bet_id: int, result: str, now: datetime) -> Optional[dict]:
    """
    open -> won|lost exactly once. Returns a summary for logging, or None when
    another worker already settled the bet.
    """
    bet = await session.get(Bet, bet_id, populate_existing=True)
    if bet is None or bet.status != STATUS_OPEN:
        return None
    mode = await session.get(GameMode, bet.game_mode_id)
    won = is_hit(mode.name, bet.selection, result)
    status = STATUS_WON if won else STATUS_LOST
    payout = q2(bet.potential_win) if won else ZERO

    res = await session.execute(
        update(Bet)
        .where(Bet.id == bet_id, Bet.status == STATUS_OPEN)
        .values(status=status, payout=payout, settled_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return None

    if won:
        real_share, bonus_share = split_payout(bet)
        if bonus_share > 0:
            # 奖金部分回到同一笔红利，继承其流水要求
            real_share += await bonus_service.credit_winnings(
                session, bet.bonus_id, bet.user_id, bonus_share, bet.id, now=now,
            )
        if real_share > 0:
            await ledger_service.append(
                session,
                user_id=bet.user_id,
                kind=KIND_BET_CREDIT,
                balance_class=CLASS_REAL,
                amount=real_share,
                related_id=bet.id,
                created_at=now,
            )

    if bet.bonus_id and q2(bet.bonus_amount or 0) > 0:
        await bonus_service.record_wager(session, bet.bonus_id, bet.bonus_amount, now=now)

    return {
        "bet_id": bet.id,
        "draw_id": bet.draw_id,
        "user_id": bet.user_id,
        "mode": mode.name,
        "selection": bet.selection,
        "stake": q2(bet.amount),
        "win": payout,
        "status": status,
    }


async def settle_bet(factory: async_sessionmaker, bet_id: int, result: str, now: Optional[datetime] = None):
    now = now or utcnow()
    async with unit_of_work(factory) as session:
        details = await _settle_one_bet(session, bet_id, normalize_result(result), now)
    # 只有事务成功提交才会走到这里
    if details:
        logger.info(
            "draw %s: user %s bet %s on %s %s, stake %s, won %s (%s)",
            details["draw_id"], details["user_id"], details["bet_id"], details["mode"],
            details["selection"], details["stake"], details["win"], details["status"],
        )
    return details


async def settle_open_bets(
        factory: async_sessionmaker, draw_id: int, result: str, now: Optional[datetime] = None,
) -> SettlementReport:
    """Settle every open bet of a settled draw; bets run concurrently, one transaction each."""
    now = now or utcnow()
    result = normalize_result(result)
    async with factory() as session:
        rs = await session.execute(
            select(Bet.id).where(Bet.draw_id == draw_id, Bet.status == STATUS_OPEN).order_by(Bet.id.asc())
        )
        bet_ids = list(rs.scalars().all())

    report = SettlementReport(draw_id=draw_id, result=result)
    if not bet_ids:
        return report

    sem = asyncio.Semaphore(max(1, settings.SETTLEMENT_CONCURRENCY))

    async def _run(bid: int):
        async with sem:
            return await settle_bet(factory, bid, result, now)

    outcomes = await asyncio.gather(*(_run(bid) for bid in bet_ids), return_exceptions=True)
    for bid, out in zip(bet_ids, outcomes):
        if isinstance(out, Exception):
            # 单笔失败不影响其他注单，补结算任务会再处理
            logger.error("settlement of bet %s failed: %r", bid, out)
            continue
        if not out:
            continue
        report.settled += 1
        report.bet_ids.append(bid)
        if out["status"] == STATUS_WON:
            report.won += 1
            report.paid += out["win"]
        else:
            report.lost += 1
    return report


async def settle_draw(
        factory: async_sessionmaker, draw_id: int, result: str | int, now: Optional[datetime] = None,
) -> SettlementReport:
    """
    The draw's pending -> settled switch is the exactly-once trigger: whoever
    wins the conditional update settles the bets, everyone else gets
    DrawAlreadySettled.
    """
    now = now or utcnow()
    result = normalize_result(result)
    async with unit_of_work(factory) as session:
        res = await session.execute(
            update(Draw)
            .where(Draw.id == draw_id, Draw.status == STATUS_PENDING)
            .values(status=STATUS_SETTLED, result=result, settled_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            draw = await session.get(Draw, draw_id)
            if draw is None:
                raise NotFound(f"draw {draw_id} not found")
            raise DrawAlreadySettled(f"draw {draw_id} already settled", result=draw.result)
    logger.info("draw %s settled with result %s", draw_id, result)

    report = await settle_open_bets(factory, draw_id, result, now)
    logger.info(
        "draw %s: %s bets settled, %s won, %s lost, paid %s",
        draw_id, report.settled, report.won, report.lost, report.paid,
    )
    return report


# ------------------------------
# 补结算：期次已开奖但仍有 open 注单
# ------------------------------
async def settle_stragglers_once(factory: async_sessionmaker, now: Optional[datetime] = None) -> List[int]:
    async with factory() as session:
        rs = await session.execute(
            select(Bet.id, Draw.result)
            .join(Draw, Draw.id == Bet.draw_id)
            .where(Bet.status == STATUS_OPEN, Draw.status == STATUS_SETTLED)
            .order_by(Bet.id.asc())
            .limit(BATCH_LIMIT)
        )
        rows = rs.all()

    settled = []
    for bid, result in rows:
        try:
            if await settle_bet(factory, bid, result, now):
                settled.append(bid)
        except Exception as e:
            logger.exception("结算注单异常 bet_id=%s: %s", bid, e)
            # 不中断后续注单
            continue
    if settled:
        logger.warning("settled %s straggler bets: %s", len(settled), settled)
    return settled


# ------------------------------
# 调度器入口（供 scheduler 调用）
# ------------------------------
async def settle_stragglers_job():
    try:
        await settle_stragglers_once(AsyncSessionLocal)
    except Exception as e:
        logger.exception("settle_stragglers_job failed: %s", e)
