"""Fire-and-forget click recording.

The redirect handler hands a click to ``ClickRecorder.dispatch`` and returns
its response straight away. The recording itself runs on a background task
with its own database session, performs the store's atomic increment+insert,
and only ever logs when something goes wrong.

Flow Diagram: dispatch()
=========================
::
    redirect handler                     background task
    ────────────────                     ───────────────
    dispatch(code, meta) ──create_task──► record(code, meta)
    return 302                            ├─ open session
                                          ├─ UPDATE … RETURNING id
                                          ├─ INSERT click / or no-op
                                          └─ COMMIT  (errors → log, drop)

Classes:
    ClickRecorder:  Owns the background tasks and their session factory.
"""

import asyncio
import logging
import time
from typing import Optional

from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.schemas import ClickMetadata
from shortlinks.store import URLStore

__all__ = ["ClickRecorder"]

CLICKS_RECORDED_TOTAL = Counter(
    "shortlinks_clicks_recorded_total",
    "Click recording outcomes",
    ["outcome"],
)
CLICK_RECORD_DURATION = Histogram(
    "shortlinks_click_record_duration_seconds",
    "Time taken to persist one click",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)


class ClickRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session_factory = session_factory
        self._logger = logger or logging.getLogger("shortlinks")
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, short_code: str, metadata: ClickMetadata) -> asyncio.Task:
        """Schedule ``record`` without waiting for it."""
        task = asyncio.create_task(self.record(short_code, metadata), name=f"click:{short_code}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def record(self, short_code: str, metadata: ClickMetadata) -> bool:
        """Persist one click. Never raises.

        Returns:
            bool: True when a click row was committed.
        """
        start_time = time.perf_counter()
        try:
            async with self._session_factory() as session:
                recorded = await URLStore(session, self._logger).increment_click_and_insert_click(
                    short_code, metadata
                )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            CLICKS_RECORDED_TOTAL.labels(outcome="error").inc()
            self._logger.error(f"Click tracking error for {short_code}: {exc!r}")
            return False

        CLICK_RECORD_DURATION.observe(time.perf_counter() - start_time)
        if not recorded:
            CLICKS_RECORDED_TOTAL.labels(outcome="missing").inc()
            self._logger.debug(f"Click dropped, code no longer exists: {short_code}")
            return False

        CLICKS_RECORDED_TOTAL.labels(outcome="recorded").inc()
        self._logger.debug(f"Click recorded for {short_code}")
        return True

    async def drain(self) -> None:
        """Wait for every in-flight click. Used at shutdown and in tests."""
        while self._tasks:
            tasks = list(self._tasks)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._tasks.difference_update(tasks)
