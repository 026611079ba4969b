from fastapi import APIRouter
from ...db import db_health
from ...redis_client import redis_health
from ...config import get_settings

router = APIRouter(prefix="/health", tags=["health"])
S = get_settings()


async def _store_ok() -> bool:
    # the memory backend has nothing to ping
    if S.STORE_BACKEND == "memory":
        return True
    return await db_health()


@router.get("")
async def health():
    store_ok, redis_ok = await _store_ok(), await redis_health()
    status = "ok" if (store_ok and redis_ok) else "degraded"
    return {
        "status": status,
        "dependencies": {
            "store": store_ok,
            "redis": redis_ok,
        },
    }

@router.get("/readiness")
async def readiness():
    # notifications are best-effort, so readiness only needs the store
    store_ok = await _store_ok()
    return {"ready": store_ok, "store": store_ok, "backend": S.STORE_BACKEND}

@router.get("/liveness")
async def liveness():
    return {"alive": True}
