from __future__ import annotations
import asyncio
import logging

from ..config import get_settings
from ..domain.errors import ReservationError
from ..redis_client import try_lock
from ..services.coordinator import ReservationCoordinator, get_coordinator
from ..observability.heartbeat import beat
from ..observability.logging import setup_logging
from ..observability.metrics import SWEEP_RUNS

S = get_settings()
log = logging.getLogger("worker.promotion_sweeper")

LOCK_KEY = "lock:promotion_sweeper"
HEARTBEAT_KEY = "hb:promotion_sweeper"

async def _acquire_lock() -> bool:
    # Only one instance performs the scan; others idle
    return await try_lock(LOCK_KEY, S.SWEEP_LOCK_TTL_SEC)

async def sweep_once(coordinator: ReservationCoordinator, *, batch: int) -> int:
    """Fill free slots from the waitlist of up to `batch` gatherings. Returns promotions made."""
    SWEEP_RUNS.inc()
    promoted = 0
    for gid in await coordinator.store.waitlist_candidates(limit=batch):
        try:
            promoted += len(await coordinator.sweep_waitlist(gid))
        except ReservationError as e:
            # one bad gathering must not stall the rest of the batch
            log.warning("sweep_failed", extra={"gathering_id": str(gid), "error": repr(e)})
    if promoted:
        log.info(f"promoted {promoted} waitlisted reservations")
    return promoted

async def run_once() -> int:
    # Acquire short lock; if taken, just skip this tick
    if not await _acquire_lock():
        return 0
    return await sweep_once(get_coordinator(), batch=S.SWEEP_BATCH)

async def run_forever():
    # heartbeat for ops
    asyncio.create_task(beat(HEARTBEAT_KEY))
    while True:
        try:
            await run_once()
        except Exception as e:
            log.exception("promotion_sweeper error: %s", e)
        await asyncio.sleep(S.SWEEP_INTERVAL_SEC)

def main():
    setup_logging()
    asyncio.run(run_forever())

if __name__ == "__main__":
    main()
