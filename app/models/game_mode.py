# app/models/game_mode.py
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Numeric, Boolean
from app.db.session import Base

class GameMode(Base):
    __tablename__ = "game_mode"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(32), unique=True)   # 'Milhar' | 'Centena' | 'Dezena' | 'Grupo'
    description: Mapped[str | None] = mapped_column(String(255))
    quotation: Mapped[Decimal] = mapped_column(Numeric(12,2))      # payout multiplier
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
