import os

# 必须在 import app.* 之前设置
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RESULT_FEED_URL"] = ""
os.environ["PAYOUT_GATEWAY_URL"] = ""
os.environ["SIGNUP_BONUS_ENABLED"] = "0"
os.environ["FIRST_DEPOSIT_BONUS_ENABLED"] = "1"
os.environ["FIRST_DEPOSIT_BONUS_PERCENTAGE"] = "100"
os.environ["FIRST_DEPOSIT_BONUS_MAX_AMOUNT"] = "200"
os.environ["FIRST_DEPOSIT_BONUS_ROLLOVER"] = "3"

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.timeutil import utcnow
from app.db.session import unit_of_work
from app.models.draw import Draw
from app.models.game_mode import GameMode
from app.schemas.payment import DepositNotification
from app.services.balance_service import current_balances
from app.services.bootstrap_service import create_schema, ensure_default_game_modes, ensure_system_settings
from app.services.payment_service import process_deposit
from app.services.settings_service import load_ledger_config, save_ledger_config
from app.services.user_service import create_user


@pytest_asyncio.fixture
async def engine(tmp_path):
    # 文件库：并发测试需要多个连接看到同一份数据
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def factory(engine):
    f = async_sessionmaker(engine, expire_on_commit=False)
    async with f() as session:
        await ensure_default_game_modes(session)
        await ensure_system_settings(session)
    return f


@pytest.fixture
def make_user(factory):
    async def _make(username=None, is_admin=False, password="secret123"):
        async with unit_of_work(factory) as session:
            u = await create_user(session, username or f"u{uuid.uuid4().hex[:8]}", password, is_admin=is_admin)
        return u.id
    return _make


@pytest.fixture
def deposit(factory):
    async def _deposit(user_id, amount, external_id=None, status="approved", gateway_id="pix"):
        note = DepositNotification(
            gateway_id=gateway_id,
            external_id=external_id or uuid.uuid4().hex,
            user_id=user_id,
            amount=Decimal(str(amount)),
            status=status,
        )
        return await process_deposit(factory, note)
    return _deposit


@pytest.fixture
def make_draw(factory):
    async def _make(starts_in=timedelta(hours=1), name="Federal"):
        async with unit_of_work(factory) as session:
            d = Draw(name=name, scheduled_at=utcnow() + starts_in, status="pending")
            session.add(d)
            await session.flush()
            return d.id
    return _make


@pytest.fixture
def balances(factory):
    async def _balances(user_id):
        async with factory() as session:
            return await current_balances(session, user_id)
    return _balances


@pytest.fixture
def configure(factory):
    async def _configure(**changes):
        async with unit_of_work(factory) as session:
            cfg = await load_ledger_config(session)
            return await save_ledger_config(session, cfg.model_copy(update=changes))
    return _configure


@pytest.fixture
def set_quotation(factory):
    async def _set(game_mode_id, quotation):
        async with unit_of_work(factory) as session:
            await session.execute(
                update(GameMode).where(GameMode.id == game_mode_id).values(quotation=Decimal(str(quotation)))
            )
    return _set
