from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_session
from app.models.user import User
from app.schemas.user import RegisterIn, LoginIn, TokenOut, UserOut
from app.core.security import verify_password, create_access_token
from app.core.auth import get_current_user
from app.core.timeutil import utcnow
from app.services.balance_service import current_balances
from app.services.user_service import create_user


router = APIRouter(prefix="/api/user", tags=["user"])


async def _user_out(session: AsyncSession, u: User) -> UserOut:
    balances = await current_balances(session, u.id)
    out = UserOut.model_validate(u)
    return out.model_copy(update={"real_balance": balances.real, "bonus_balance": balances.bonus})


@router.post("/register", response_model=UserOut, status_code=201)
async def register(data: RegisterIn, session: AsyncSession = Depends(get_session)):
    # 建用户 + 钱包 + 注册红利，同一事务
    u = await create_user(session, data.username, data.password, nickname=data.nickname)
    await session.commit()
    return await _user_out(session, u)


@router.post("/login", response_model=TokenOut)
async def login(data: LoginIn, session: AsyncSession = Depends(get_session)):
    u = await session.scalar(select(User).where(User.username == data.username))
    if not u or not verify_password(data.password, u.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid username or password")
    if u.status != 1:
        raise HTTPException(status_code=403, detail="user disabled")

    u.last_login_time = utcnow()
    await session.commit()
    token = create_access_token(subject=u.id, admin=u.is_admin)
    return TokenOut(access_token=token)


@router.get("/profile", response_model=UserOut)
async def profile(
        current_user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    return await _user_out(session, current_user)
