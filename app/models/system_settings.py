from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, Numeric, Boolean, DateTime, func
from app.db.session import Base

class SystemSettings(Base):
    """Single row (id=1) of admin-editable bonus policy and feature flags."""
    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    signup_bonus_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    signup_bonus_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), default=10)
    signup_bonus_rollover: Mapped[Decimal] = mapped_column(Numeric(8,2), default=3)
    signup_bonus_expiration_days: Mapped[int] = mapped_column(Integer, default=7)

    first_deposit_bonus_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    first_deposit_bonus_percentage: Mapped[Decimal] = mapped_column(Numeric(8,2), default=100)
    first_deposit_bonus_max_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), default=200)
    first_deposit_bonus_rollover: Mapped[Decimal] = mapped_column(Numeric(8,2), default=3)
    first_deposit_bonus_expiration_days: Mapped[int] = mapped_column(Integer, default=7)

    allow_bonus_bets: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_withdrawals: Mapped[bool] = mapped_column(Boolean, default=True)

    min_bet_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), default=Decimal("0.50"))
    max_bet_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), default=5000)
    max_payout: Mapped[Decimal] = mapped_column(Numeric(16,2), default=50000)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
