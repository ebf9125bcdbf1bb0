# app/tasks/scheduler.py
import logging
from datetime import datetime, timedelta
from typing import List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.core.errors import DrawAlreadySettled, LedgerError
from app.core.timeutil import utcnow
from app.db.session import AsyncSessionLocal
from app.models.wallet import LedgerEntry
from app.schemas.draws import DrawResultFeedItem
from app.services.balance_service import reconcile
from app.services.bonus_service import expire_due_bonuses
from app.tasks.settlement import settle_draw, settle_stragglers_job

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")

RECONCILE_LOOKBACK = timedelta(hours=1)


# ------------------------------
# 开奖结果采集
# ------------------------------
async def fetch_draw_results(url: str, client: Optional[httpx.AsyncClient] = None) -> List[DrawResultFeedItem]:
    ts = int(datetime.now().timestamp() * 1000)
    url = f"{url}{'&' if '?' in url else '?'}_={ts}"
    if client is None:
        async with httpx.AsyncClient(timeout=10) as c:
            resp = await c.get(url)
    else:
        resp = await client.get(url)
    resp.raise_for_status()
    data = resp.json()

    # 兼容单条和列表两种返回
    if isinstance(data, dict):
        if "results" in data:
            data = data["results"] or []
        elif "data" in data:
            data = data["data"] or []
        else:
            data = [data]
    items = []
    for raw in data:
        try:
            items.append(DrawResultFeedItem.model_validate(raw))
        except ValidationError as e:
            logger.warning("skipping malformed feed item %r: %s", raw, e)
    return items


async def collect_results_once(
        factory: async_sessionmaker, url: str, client: Optional[httpx.AsyncClient] = None,
) -> List[int]:
    """Feed every result into settlement; a redelivered result is a no-op."""
    settled = []
    for item in await fetch_draw_results(url, client=client):
        try:
            await settle_draw(factory, item.draw_id, item.result)
            settled.append(item.draw_id)
        except DrawAlreadySettled:
            continue
        except LedgerError as e:
            logger.warning("feed result for draw %s ignored: %s", item.draw_id, e.message)
    return settled


async def collector_job():
    try:
        await collect_results_once(AsyncSessionLocal, settings.RESULT_FEED_URL)
    except Exception as e:
        logger.exception("[collector_job] error: %s", e)


# ------------------------------
# 红利过期 / 对账
# ------------------------------
async def expire_bonuses_job():
    try:
        expired = await expire_due_bonuses(AsyncSessionLocal)
        if expired:
            logger.info("expired bonuses: %s", expired)
    except Exception as e:
        logger.exception("expire_bonuses_job failed: %s", e)


async def reconcile_recent_users(factory: async_sessionmaker, since: datetime) -> List[int]:
    """Returns the users whose projection disagrees with the ledger."""
    async with factory() as session:
        rs = await session.execute(
            select(LedgerEntry.user_id).where(LedgerEntry.created_at >= since).distinct()
        )
        user_ids = list(rs.scalars().all())
        mismatched = []
        for uid in user_ids:
            report = await reconcile(session, uid)
            if not report.consistent:
                mismatched.append(uid)
    return mismatched


async def reconcile_job():
    try:
        await reconcile_recent_users(AsyncSessionLocal, utcnow() - RECONCILE_LOOKBACK)
    except Exception as e:
        logger.exception("reconcile_job failed: %s", e)


def start_scheduler():
    """
    启动调度器：
      - 红利过期扫描
      - 补结算（期次已开奖但注单仍 open）
      - 对账
      - 采集开奖结果（配置了 RESULT_FEED_URL 才启用）
    """
    common = dict(replace_existing=True, coalesce=True, max_instances=1, misfire_grace_time=10)

    scheduler.add_job(
        expire_bonuses_job, "interval",
        seconds=settings.BONUS_EXPIRY_POLL_SECONDS, id="expire_bonuses", **common,
    )
    scheduler.add_job(
        settle_stragglers_job, "interval",
        seconds=settings.SETTLE_STRAGGLERS_POLL_SECONDS, id="settle_stragglers", **common,
    )
    scheduler.add_job(
        reconcile_job, "interval",
        seconds=settings.RECONCILE_POLL_SECONDS, id="reconcile", **common,
    )
    if settings.RESULT_FEED_URL:
        scheduler.add_job(
            collector_job, "interval",
            seconds=settings.RESULT_FEED_POLL_SECONDS, id="collector", **common,
        )

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
