"""
db/evictor.py
-------------
Background task that periodically closes idle schema pools so the number
of open connections stays bounded as tenants accumulate.
"""

import threading
from typing import Optional

from config import POOL_EVICT_INTERVAL_SECONDS, POOL_IDLE_SECONDS
from db.connection import PoolCache
from utils.logger import get_logger

logger = get_logger(__name__)


class IdlePoolEvictor:
    """
    Runs `PoolCache.evict_idle(max_idle)` every `interval` seconds on a
    daemon thread until `stop()` is called. A failed pass is logged and the
    loop keeps going.
    """

    def __init__(
        self,
        pools: PoolCache,
        max_idle: float = POOL_IDLE_SECONDS,
        interval: float = POOL_EVICT_INTERVAL_SECONDS,
    ):
        self.pools = pools
        self.max_idle = max_idle
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> list[str]:
        try:
            return self.pools.evict_idle(self.max_idle)
        except Exception as e:
            logger.error(f"Idle pool eviction failed: {e}")
            return []

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="idle-pool-evictor", daemon=True)
        self._thread.start()
        logger.info(
            f"Idle pool eviction every {self.interval:g}s (max idle {self.max_idle:g}s)"
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
