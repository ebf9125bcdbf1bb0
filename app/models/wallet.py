
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Numeric, DateTime, BigInteger, UniqueConstraint, func
from app.db.session import Base, BigId

# ledger kinds
KIND_DEPOSIT = "deposit"
KIND_WITHDRAWAL = "withdrawal"
KIND_WITHDRAWAL_REVERSAL = "withdrawal_reversal"
KIND_BET_DEBIT = "bet_debit"
KIND_BET_CREDIT = "bet_credit"
KIND_BONUS_GRANT = "bonus_grant"
KIND_BONUS_CONSUME = "bonus_consume"
KIND_BONUS_EXPIRE = "bonus_expire"
KIND_ADJUSTMENT = "adjustment"

LEDGER_KINDS = (
    KIND_DEPOSIT, KIND_WITHDRAWAL, KIND_WITHDRAWAL_REVERSAL,
    KIND_BET_DEBIT, KIND_BET_CREDIT,
    KIND_BONUS_GRANT, KIND_BONUS_CONSUME, KIND_BONUS_EXPIRE,
    KIND_ADJUSTMENT,
)

# balance classes
CLASS_REAL = "real"
CLASS_BONUS = "bonus"


class WalletAccount(Base):
    """Cached projection of a user's ledger; only LedgerStore.append writes it."""
    __tablename__ = "wallet_account"
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    real_balance: Mapped[Decimal] = mapped_column(Numeric(16,2), default=0, nullable=False)
    bonus_balance: Mapped[Decimal] = mapped_column(Numeric(16,2), default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class LedgerEntry(Base):
    __tablename__ = "ledger_entry"
    __table_args__ = (
        # one effect per (kind, class, cause); NULL related ids are not deduplicated
        UniqueConstraint("kind", "balance_class", "related_id", name="uq_ledger_effect"),
    )
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(16,2), nullable=False)  # signed
    balance_class: Mapped[str] = mapped_column(String(8), nullable=False)
    related_id: Mapped[int | None] = mapped_column(BigInteger)
    bonus_id: Mapped[int | None] = mapped_column(BigInteger)
    remark: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
