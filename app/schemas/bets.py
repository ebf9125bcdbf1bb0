from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from app.schemas.payment import Money

# 下注入参
class BetIn(BaseModel):
    draw_id: int
    game_mode_id: int
    selection: str | int                  # '1234' / '234' / '34' / 1..25 for Grupo
    amount: Money
    use_bonus: bool = True                # allow bonus funds for this stake

class BetOut(BaseModel):
    id: int
    draw_id: int
    game_mode_id: int
    selection: str
    amount: Decimal
    potential_win: Decimal
    real_amount: Decimal
    bonus_amount: Decimal
    bonus_id: Optional[int] = None
    status: str
    payout: Decimal
    created_at: datetime
    settled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class SettlementReport(BaseModel):
    draw_id: int
    result: str
    settled: int = 0
    won: int = 0
    lost: int = 0
    paid: Decimal = Decimal("0.00")
    bet_ids: List[int] = []
