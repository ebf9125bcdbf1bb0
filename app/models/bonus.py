
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Numeric, DateTime, BigInteger, UniqueConstraint
from app.db.session import Base, BigId

TYPE_SIGNUP = "signup"
TYPE_FIRST_DEPOSIT = "first_deposit"

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"

class Bonus(Base):
    __tablename__ = "bonus"
    __table_args__ = (
        UniqueConstraint("user_id", "bonus_type", name="uq_bonus_user_type"),
    )
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    bonus_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False, default=0)
    rollover_requirement: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False)
    rollover_progress: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    related_transaction_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
