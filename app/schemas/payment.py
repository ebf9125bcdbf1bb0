from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional
from pydantic import AfterValidator, BaseModel, ConfigDict, Field

def _whole_cents(v: Decimal) -> Decimal:
    if v != v.quantize(Decimal("0.01")):
        raise ValueError("amount must be a whole number of cents")
    return v

# 正数且最多两位小数
Money = Annotated[Decimal, Field(gt=0), AfterValidator(_whole_cents)]

# 网关回调：存款通知
class DepositNotification(BaseModel):
    gateway_id: str = Field(min_length=1, max_length=64)
    external_id: str = Field(min_length=1, max_length=128)
    user_id: int
    amount: Money
    status: Literal["pending", "approved", "rejected"]

# 网关回调：提现结果
class WithdrawalOutcome(BaseModel):
    gateway_id: str
    external_id: str
    status: Literal["approved", "rejected"]

class WithdrawalIn(BaseModel):
    amount: Money
    gateway_id: str = "default"

class PaymentOut(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    type: str
    status: str
    gateway_id: str
    external_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class DepositResult(BaseModel):
    transaction: PaymentOut
    credited: bool
    bonus_id: Optional[int] = None
