from __future__ import annotations
from typing import Any, Dict

import jwt  # PyJWT

from ..config import get_settings

S = get_settings()

ALGO = "HS256"
# tokens are minted by the identity service; only the claims below are read here
REQUIRED_CLAIMS = ["exp", "iat", "sub"]


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify signature, audience, issuer and expiry. Raises jwt.PyJWTError."""
    return jwt.decode(
        token,
        S.JWT_SECRET,
        algorithms=[ALGO],
        audience=S.APP_NAME,
        issuer=S.APP_NAME,
        options={"require": REQUIRED_CLAIMS},
    )
