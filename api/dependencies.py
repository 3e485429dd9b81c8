"""API Dependencies - Authentication"""
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from domain.auth import User, UserInDB
from domain.value_objects import Actor
from infrastructure.security import decode_access_token, get_password_hash
from api.schemas import TokenData

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Stand-in for the identity service; passwords are hashed on first lookup
fake_users_db = {
    "operator": {
        "user_id": "123e4567-e89b-12d3-a456-426614174000",
        "username": "operator",
        "full_name": "Fleet Operator",
        "email": "operator@example.com",
        "plain_password": "operator123",
        "role": "OPERATOR",
        "disabled": False,
    },
    "customer": {
        "user_id": "9b2f6c1e-3d4a-4f7b-8e2d-5a6c7b8d9e0f",
        "username": "customer",
        "full_name": "Demo Customer",
        "email": "customer@example.com",
        "plain_password": "customer123",
        "role": "CUSTOMER",
        "disabled": False,
    },
    "suspended": {
        "user_id": "5d0e1f2a-6b7c-4d8e-9f0a-1b2c3d4e5f60",
        "username": "suspended",
        "full_name": "Suspended Customer",
        "email": "suspended@example.com",
        "plain_password": "suspended123",
        "role": "CUSTOMER",
        "disabled": True,
    },
}

_hashed_passwords: Dict[str, str] = {}


def get_user(db: dict, username: str) -> Optional[UserInDB]:
    record = db.get(username)
    if record is None:
        return None

    fields = {k: v for k, v in record.items() if k != "plain_password"}
    if username not in _hashed_passwords:
        _hashed_passwords[username] = get_password_hash(record["plain_password"])
    return UserInDB(**fields, hashed_password=_hashed_passwords[username])


async def get_current_user(token: str = Depends(oauth2_scheme)) -> UserInDB:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        token_data = TokenData(username=decode_access_token(token).get("sub"))
    except JWTError:
        raise credentials_exception
    if token_data.username is None:
        raise credentials_exception

    user = get_user(fake_users_db, token_data.username)
    if user is None:
        raise credentials_exception
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


async def get_current_actor(current_user: User = Depends(get_current_active_user)) -> Actor:
    """Identity handed to the reservation engine"""
    return current_user.as_actor()
