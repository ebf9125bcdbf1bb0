from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field


class Balances(BaseModel):
    real: Decimal
    bonus: Decimal


class FundingSplit(BaseModel):
    """Real/bonus composition of one stake, fixed at placement."""
    model_config = ConfigDict(frozen=True)

    real_amount: Decimal
    bonus_amount: Decimal
    bonus_id: Optional[int] = None

    @property
    def total(self) -> Decimal:
        return self.real_amount + self.bonus_amount


class LedgerEntryOut(BaseModel):
    id: int
    kind: str
    amount: Decimal
    balance_class: str
    related_id: Optional[int] = None
    bonus_id: Optional[int] = None
    remark: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BonusOut(BaseModel):
    id: int
    bonus_type: str
    amount: Decimal
    remaining_amount: Decimal
    rollover_requirement: Decimal
    rollover_progress: Decimal
    status: str
    expires_at: datetime
    related_transaction_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ReconcileReport(BaseModel):
    user_id: int
    ledger_real: Decimal
    ledger_bonus: Decimal
    projected_real: Decimal
    projected_bonus: Decimal
    active_bonus_sum: Decimal
    entries: int

    @computed_field
    @property
    def consistent(self) -> bool:
        return (
            self.ledger_real == self.projected_real
            and self.ledger_bonus == self.projected_bonus
            and self.active_bonus_sum == self.projected_bonus
        )


class AdjustmentIn(BaseModel):
    balance_class: Literal["real", "bonus"] = "real"
    amount: Decimal                         # signed
    bonus_id: Optional[int] = None          # required for the bonus class
    reason: str = Field(min_length=1, max_length=200)


class WalletSummary(BaseModel):
    balances: Balances
    bonuses: List[BonusOut]
