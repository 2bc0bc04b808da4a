from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import QuickTestSettings

# Login lives with the identity provider; this backend only reads its tokens.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


class TokenData(BaseModel):
    user_id: Optional[int] = None


def create_access_token(
    data: dict,
    settings: QuickTestSettings,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode,
        settings.secret_key.get_secret_value(),
        algorithm=settings.algorithm,
    )


def decode_user_id(token: str, settings: QuickTestSettings) -> int:
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials.",
    )
    try:
        payload = jwt.decode(
            token,
            settings.secret_key.get_secret_value(),
            algorithms=[settings.algorithm],
        )
        sub = payload.get("sub")
        if sub is None:
            raise credentials_exception
        data = TokenData(user_id=int(sub))
    except (JWTError, ValueError):
        raise credentials_exception
    return data.user_id


def get_optional_user_id(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
) -> Optional[int]:
    """Anonymous when no bearer token is sent; 401 when one is sent but invalid."""
    if not token:
        return None
    return decode_user_id(token, request.app.state.settings)


def get_current_user_id(user_id: Optional[int] = Depends(get_optional_user_id)) -> int:
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
