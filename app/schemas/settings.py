from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field


class LedgerConfig(BaseModel):
    """Bonus policy and feature flags, read once per operation."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    signup_bonus_enabled: bool = False
    signup_bonus_amount: Decimal = Field(default=Decimal("10"), ge=0)
    signup_bonus_rollover: Decimal = Field(default=Decimal("3"), ge=0)
    signup_bonus_expiration_days: int = Field(default=7, ge=0)

    first_deposit_bonus_enabled: bool = True
    first_deposit_bonus_percentage: Decimal = Field(default=Decimal("100"), ge=0)
    first_deposit_bonus_max_amount: Decimal = Field(default=Decimal("200"), ge=0)
    first_deposit_bonus_rollover: Decimal = Field(default=Decimal("3"), ge=0)
    first_deposit_bonus_expiration_days: int = Field(default=7, ge=0)

    allow_bonus_bets: bool = True
    allow_withdrawals: bool = True

    # 下注限额；0 表示不限
    min_bet_amount: Decimal = Field(default=Decimal("0.50"), ge=0)
    max_bet_amount: Decimal = Field(default=Decimal("5000"), ge=0)
    max_payout: Decimal = Field(default=Decimal("50000"), ge=0)
