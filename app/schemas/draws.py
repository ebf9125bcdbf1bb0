from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class DrawIn(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    scheduled_at: datetime

class DrawResultIn(BaseModel):
    result: str | int

class DrawOut(BaseModel):
    id: int
    name: str
    scheduled_at: datetime
    status: str
    result: Optional[str] = None
    settled_at: Optional[datetime] = None
    local_time: str = ""

    model_config = ConfigDict(from_attributes=True)

class GameModeOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    quotation: Decimal
    active: bool

    model_config = ConfigDict(from_attributes=True)

# 结果推送（外部开奖源）
class DrawResultFeedItem(BaseModel):
    draw_id: int = Field(alias="drawId")
    result: str | int

    model_config = ConfigDict(populate_by_name=True)
