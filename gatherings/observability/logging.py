from __future__ import annotations
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request
from pythonjsonlogger import jsonlogger

from ..config import get_settings

S = get_settings()

# set by the request middleware; lets coordinator/store logs carry the request id
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get() or ""
        return True


def setup_logging(level: Optional[str] = None) -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
            rename_fields={"levelname": "level", "asctime": "ts"},
            static_fields={"service": S.APP_NAME, "env": S.ENV},
        )
    )
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    root.setLevel(level or S.LOG_LEVEL)

    # quiet noisy loggers
    logging.getLogger("uvicorn.access").setLevel("WARNING")


def get_request_id(req: Request) -> str:
    return req.headers.get(S.REQUEST_ID_HEADER) or uuid.uuid4().hex
