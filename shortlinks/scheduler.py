"""Periodic background tasks run inside the API process.

The built-in job is a keep-alive that calls the service's own health endpoint
on a fixed interval, which stops idle-sleeping hosts from suspending the app.
Other components can register their own periodic callbacks.

Flow Diagram: add_scheduled_task()
=================================
::
    ┌────────────────────┐
    │ create_task(_run)  │
    └─────────┬──────────┘
              ▼
    ┌────────────────────┐   error   ┌──────────────┐
    │ callback()         │ ────────► │ log, go on   │
    └─────────┬──────────┘           └──────┬───────┘
              ▼                             │
    ┌────────────────────┐                  │
    │ sleep(interval)    │ ◄────────────────┘
    └─────────┬──────────┘
              └──► loop until stop() cancels it

Key Behaviours
===============
- Every task runs once immediately, then once per interval.
- A failing callback is logged and retried on the next tick.
- ``stop()`` cancels every task; it is called from the app lifespan.

Classes:
    Scheduler:  Owns the periodic tasks.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

import httpx
from prometheus_client import Counter

from shortlinks.config import Settings

__all__ = ["Scheduler"]

SCHEDULED_TASK_RUNS_TOTAL = Counter(
    "shortlinks_scheduled_task_runs_total",
    "Scheduled task executions",
    ["task", "outcome"],
)

TaskCallback = Callable[[], Union[None, Awaitable[None]]]


class Scheduler:
    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._logger = logger or logging.getLogger("shortlinks")
        self._timeout = timeout
        self._transport = transport
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    def start(self, settings: Settings) -> None:
        """Start the configured jobs, or do nothing when disabled."""
        if not settings.SCHEDULER_ENABLED:
            self._logger.info("Scheduler is disabled")
            return

        self._logger.info("Initializing scheduler...")
        self.start_health_check(
            settings.SCHEDULER_HEALTH_CHECK_URL,
            settings.SCHEDULER_HEALTH_CHECK_INTERVAL_MINUTES,
        )

    def start_health_check(self, url: str, interval_minutes: float) -> asyncio.Task:
        self._logger.info(f"Starting health check scheduler: calling {url} every {interval_minutes} minutes")
        return self.add_scheduled_task("health-check", lambda: self.call_url(url), interval_minutes * 60)

    def add_scheduled_task(self, name: str, callback: TaskCallback, interval_seconds: float) -> asyncio.Task:
        """Run ``callback`` now and then every ``interval_seconds``.

        ``callback`` may be a plain function or return an awaitable. A task
        registered under an existing name replaces it.
        """
        self._logger.info(f"Adding scheduled task: {name} (interval: {interval_seconds}s)")
        previous = self._tasks.pop(name, None)
        if previous is not None:
            previous.cancel()

        task = asyncio.create_task(self._run(name, callback, interval_seconds), name=f"scheduled:{name}")
        self._tasks[name] = task
        return task

    async def call_url(self, url: str) -> Optional[int]:
        """GET ``url`` and return the status code, or None if it failed."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            self._logger.error(f"Error calling {url}: {exc!r}")
            return None

        self._logger.info(f"Called {url} -> Status: {response.status_code}")
        return response.status_code

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._logger.info("Stopping all scheduled tasks...")
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, name: str, callback: TaskCallback, interval_seconds: float) -> None:
        while True:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
                SCHEDULED_TASK_RUNS_TOTAL.labels(task=name, outcome="success").inc()
            except Exception as exc:
                SCHEDULED_TASK_RUNS_TOTAL.labels(task=name, outcome="error").inc()
                self._logger.error(f"Error executing scheduled task {name}: {exc!r}")
            await asyncio.sleep(interval_seconds)
