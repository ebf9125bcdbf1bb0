from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import LedgerError
from app.core.security import hash_password
from app.models.user import User
from app.services import bonus_service, ledger_service
from app.services.settings_service import load_ledger_config


class UsernameTaken(LedgerError):
    code = "username_taken"
    status_code = 400


async def create_user(
        session: AsyncSession,
        username: str,
        password: str,
        nickname: Optional[str] = None,
        is_admin: bool = False,
) -> User:
    """User + wallet account + signup bonus, in the caller's transaction."""
    exists = await session.scalar(select(User.id).where(User.username == username))
    if exists:
        raise UsernameTaken(f"username {username} already exists")

    u = User(
        username=username,
        password_hash=hash_password(password),
        nickname=nickname or username,
        status=1,
        is_admin=is_admin,
    )
    session.add(u)
    try:
        await session.flush()
    except IntegrityError as e:
        raise UsernameTaken(f"username {username} already exists") from e

    await ledger_service.ensure_account(session, u.id)
    cfg = await load_ledger_config(session)
    await bonus_service.grant_signup_bonus(session, u.id, cfg)
    return u
