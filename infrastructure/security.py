"""Password hashing and access tokens for the fleet API"""
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt
from passlib.context import CryptContext

from config import settings
from domain.auth import User

SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

# bcrypt only reads the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__ident="2b")


def _prepare_password(password: str) -> str:
    """Pre-hash passwords bcrypt would silently truncate"""
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        return hashlib.sha256(raw).hexdigest()
    return password


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(_prepare_password(plain_password), hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(_prepare_password(password))


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a bearer token naming the user and the role it was issued for"""
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": user.username,
        "uid": str(user.user_id),
        "role": user.role.value,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry; raises jose.JWTError on a bad token"""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
