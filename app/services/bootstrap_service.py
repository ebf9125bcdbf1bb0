from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.db.session import engine, Base
from app.models.game_mode import GameMode
from app.models.system_settings import SystemSettings
from app.services.game_rules import DEFAULT_GAME_MODES
from app.services.settings_service import SETTINGS_ROW_ID, default_ledger_config


def _import_models():
    # 注册全部表到 Base.metadata
    from app.models import bet, bonus, draw, game_mode, payment, system_settings, user, wallet  # noqa: F401


async def create_schema(db_engine: AsyncEngine):
    _import_models()
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    await create_schema(engine)


async def ensure_default_game_modes(session: AsyncSession):
    rs = await session.execute(select(GameMode.id))
    existing = set(rs.scalars().all())
    for gid, name, desc, quotation, sort_order in DEFAULT_GAME_MODES:
        if gid in existing:
            continue
        session.add(GameMode(
            id=gid,
            name=name,
            description=desc,
            quotation=Decimal(quotation),
            active=True,
            sort_order=sort_order,
        ))
    await session.commit()


async def ensure_system_settings(session: AsyncSession) -> SystemSettings:
    row = await session.get(SystemSettings, SETTINGS_ROW_ID)
    if row is None:
        row = SystemSettings(id=SETTINGS_ROW_ID, **default_ledger_config().model_dump())
        session.add(row)
        await session.commit()
    return row
