"""
CJ Global Throttle - account-wide request spacing for CJ Dropshipping

CJ enforces its rate limit per account, not per connection, so every client
instance in the process must queue behind one gate.

Controls:
- One dispatch at a time through an asyncio.Lock
- Minimum interval between dispatches (default 1500ms, above the ~1 req/s limit)
- Gate released after a short settle delay in the background, not immediately
- Per-tier post-dispatch delay and rate-limit backoff tables
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from app.core.config import settings
from app.services.cj.types import CJTier

logger = logging.getLogger(__name__)


# Extra pause after a successful call, on top of the global interval
TIER_EXTRA_DELAY_SECONDS: Dict[CJTier, float] = {
    CJTier.FREE: 0.0,
    CJTier.PLUS: 0.2,
    CJTier.PRIME: 0.1,
    CJTier.ADVANCED: 0.05,
}

# Sleep before the single retry after a 429 / 1600200
TIER_BACKOFF_SECONDS: Dict[CJTier, float] = {
    CJTier.FREE: 20.0,
    CJTier.PLUS: 10.0,
    CJTier.PRIME: 8.0,
    CJTier.ADVANCED: 5.0,
}
DEFAULT_BACKOFF_SECONDS = 15.0


def tier_delay(tier: Optional[CJTier]) -> float:
    return TIER_EXTRA_DELAY_SECONDS.get(tier, 0.0)


def rate_limit_backoff(tier: Optional[CJTier]) -> float:
    return TIER_BACKOFF_SECONDS.get(tier, DEFAULT_BACKOFF_SECONDS)


class GlobalThrottle:
    """
    Process-wide dispatch gate.

    Guarantees adjacent acquire() returns are at least min_interval apart on
    the injected clock. Clock and sleep are injectable so tests can drive
    time without real waiting.
    """

    def __init__(
        self,
        min_interval: Optional[float] = None,
        settle_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_interval = (
            min_interval if min_interval is not None
            else settings.CJ_MIN_REQUEST_INTERVAL_MS / 1000
        )
        self.settle_delay = (
            settle_delay if settle_delay is not None
            else settings.CJ_THROTTLE_SETTLE_MS / 1000
        )
        self._clock = clock
        self._sleep = sleep
        self._gate = asyncio.Lock()
        self._last_request_at: Optional[float] = None
        self._release_tasks: Set[asyncio.Task] = set()

        self._metrics = {
            "dispatches": 0,
            "throttled": 0,
            "total_wait_seconds": 0.0,
        }

    @property
    def last_request_at(self) -> Optional[float]:
        return self._last_request_at

    @property
    def locked(self) -> bool:
        return self._gate.locked()

    async def acquire(self) -> None:
        """
        Wait for this caller's dispatch slot.

        Returns once the caller may send its request. The gate stays held for
        settle_delay afterwards so the next caller cannot slip in mid-dispatch.
        """
        await self._gate.acquire()
        try:
            if self._last_request_at is not None:
                elapsed = self._clock() - self._last_request_at
                if elapsed < self.min_interval:
                    wait_time = self.min_interval - elapsed
                    logger.debug(f"[CJ_THROTTLE] Waiting {wait_time:.3f}s (min interval)")
                    self._metrics["throttled"] += 1
                    self._metrics["total_wait_seconds"] += wait_time
                    await self._sleep(wait_time)
            self._last_request_at = self._clock()
            self._metrics["dispatches"] += 1
        except BaseException:
            self._gate.release()
            raise

        task = asyncio.get_running_loop().create_task(self._release_after_settle())
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    async def _release_after_settle(self) -> None:
        try:
            await self._sleep(self.settle_delay)
        finally:
            self._gate.release()

    def get_status(self) -> Dict[str, Any]:
        return {
            **self._metrics,
            "min_interval_seconds": self.min_interval,
            "settle_delay_seconds": self.settle_delay,
            "locked": self.locked,
        }


_global_throttle: Optional[GlobalThrottle] = None


def get_global_throttle() -> GlobalThrottle:
    """Shared throttle for every CJ client in the process."""
    global _global_throttle
    if _global_throttle is None:
        _global_throttle = GlobalThrottle()
        logger.info(
            f"[CJ_THROTTLE] Global throttle initialized "
            f"(min_interval={_global_throttle.min_interval}s, settle={_global_throttle.settle_delay}s)"
        )
    return _global_throttle
