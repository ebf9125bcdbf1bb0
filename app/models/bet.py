
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Numeric, DateTime, BigInteger
from app.db.session import Base, BigId

STATUS_OPEN = "open"
STATUS_WON = "won"
STATUS_LOST = "lost"

class Bet(Base):
    __tablename__ = "bet"
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    draw_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    game_mode_id: Mapped[int] = mapped_column(Integer, nullable=False)
    selection: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False)
    potential_win: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False)
    # funding split, fixed at placement
    real_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False, default=0)
    bonus_amount: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False, default=0)
    bonus_id: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(8), nullable=False, default=STATUS_OPEN)
    payout: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime)
