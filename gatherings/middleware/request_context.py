from __future__ import annotations
import logging
import time

import jwt
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.jwt import decode_session_token
from ..config import get_settings
from ..observability.logging import get_request_id, request_id_var

S = get_settings()
log = logging.getLogger("gatherings.request")


def _caller(request: Request) -> str:
    token = request.cookies.get(S.SESSION_COOKIE_NAME)
    if not token:
        return "anonymous"
    try:
        return str(decode_session_token(token).get("sub"))
    except jwt.PyJWTError:
        # the route dependency answers 401; here it is only a log field
        return "invalid"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """One JSON line per request, tagged with a request id that is echoed back."""

    async def dispatch(self, request: Request, call_next):
        rid = get_request_id(request)
        token = request_id_var.set(rid)
        start = time.perf_counter()
        fields = {"path": request.url.path, "method": request.method, "user_id": _caller(request)}
        try:
            response = await call_next(request)
        except Exception:
            log.exception("unhandled_error", extra={**fields, "ms": int((time.perf_counter() - start) * 1000)})
            raise
        finally:
            request_id_var.reset(token)

        response.headers[S.REQUEST_ID_HEADER] = rid
        log.info(
            "request",
            extra={**fields, "status": response.status_code, "ms": int((time.perf_counter() - start) * 1000), "request_id": rid},
        )
        return response
