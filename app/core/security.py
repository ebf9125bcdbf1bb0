
from datetime import datetime, timedelta, timezone
from typing import Optional
from passlib.context import CryptContext
import jwt

from app.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)

def _salted(raw: str) -> str:
    return f"{raw}:{settings.PASSWORD_SALT}"

def hash_password(raw: str) -> str:
    return pwd_context.hash(_salted(raw))

def verify_password(raw: str, hashed: str) -> bool:
    return pwd_context.verify(_salted(raw), hashed)

def create_access_token(subject: str | int, admin: bool = False, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES)
    payload = {
        "sub": str(subject),
        "adm": bool(admin),
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp()),
        "iss": settings.APP_NAME,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")

def decode_access_token(token: str) -> int:
    """Return the user id of a valid token; raises jwt.PyJWTError / ValueError otherwise."""
    payload = jwt.decode(
        token, settings.JWT_SECRET, algorithms=["HS256"],
        issuer=settings.APP_NAME,
        options={"require": ["exp", "iat", "sub", "iss"]},
    )
    sub = payload.get("sub")
    if not sub:
        raise ValueError("no sub")
    return int(sub)
