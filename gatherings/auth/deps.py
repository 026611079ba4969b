from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status

from ..config import get_settings
from .jwt import decode_session_token

S = get_settings()


@dataclass(frozen=True)
class Principal:
    """Caller identity as established upstream (session cookie issued elsewhere)."""
    user_id: uuid.UUID
    is_admin: bool = False


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(request: Request) -> Principal:
    token: Optional[str] = request.cookies.get(S.SESSION_COOKIE_NAME)
    if not token:
        raise _unauthorized("Not authenticated")

    try:
        claims = decode_session_token(token)
        user_id = uuid.UUID(str(claims["sub"]))
    except (jwt.PyJWTError, ValueError):
        raise _unauthorized("Invalid session")

    return Principal(user_id=user_id, is_admin=claims.get("adm") is True)


async def require_admin(current: Principal = Depends(get_current_user)) -> Principal:
    if not current.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return current
