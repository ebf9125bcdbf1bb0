
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict

class RegisterIn(BaseModel):
    username: str = Field(min_length=3, max_length=32)
    password: str = Field(min_length=6, max_length=64)
    nickname: str | None = None

class LoginIn(BaseModel):
    username: str
    password: str

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: int
    username: str
    nickname: str | None = None
    status: int
    is_admin: bool = False
    real_balance: Decimal = Decimal("0")
    bonus_balance: Decimal = Decimal("0")

    model_config = ConfigDict(from_attributes=True)
