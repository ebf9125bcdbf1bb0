from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.system_settings import SystemSettings
from app.schemas.settings import LedgerConfig

SETTINGS_ROW_ID = 1


def default_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        signup_bonus_enabled=settings.SIGNUP_BONUS_ENABLED,
        signup_bonus_amount=Decimal(settings.SIGNUP_BONUS_AMOUNT),
        signup_bonus_rollover=Decimal(settings.SIGNUP_BONUS_ROLLOVER),
        signup_bonus_expiration_days=settings.SIGNUP_BONUS_EXPIRATION_DAYS,
        first_deposit_bonus_enabled=settings.FIRST_DEPOSIT_BONUS_ENABLED,
        first_deposit_bonus_percentage=Decimal(settings.FIRST_DEPOSIT_BONUS_PERCENTAGE),
        first_deposit_bonus_max_amount=Decimal(settings.FIRST_DEPOSIT_BONUS_MAX_AMOUNT),
        first_deposit_bonus_rollover=Decimal(settings.FIRST_DEPOSIT_BONUS_ROLLOVER),
        first_deposit_bonus_expiration_days=settings.FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS,
        allow_bonus_bets=settings.ALLOW_BONUS_BETS,
        allow_withdrawals=settings.ALLOW_WITHDRAWALS,
        min_bet_amount=Decimal(settings.MIN_BET_AMOUNT),
        max_bet_amount=Decimal(settings.MAX_BET_AMOUNT),
        max_payout=Decimal(settings.MAX_PAYOUT),
    )


async def load_ledger_config(session: AsyncSession) -> LedgerConfig:
    row = await session.get(SystemSettings, SETTINGS_ROW_ID)
    if row is None:
        return default_ledger_config()
    return LedgerConfig.model_validate(row)


async def save_ledger_config(session: AsyncSession, cfg: LedgerConfig) -> LedgerConfig:
    row = await session.get(SystemSettings, SETTINGS_ROW_ID)
    if row is None:
        row = SystemSettings(id=SETTINGS_ROW_ID)
        session.add(row)
    for field, value in cfg.model_dump().items():
        setattr(row, field, value)
    await session.flush()
    return cfg
