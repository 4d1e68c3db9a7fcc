"""
Background scheduler - periodic jobs as cancellable asyncio tasks.

Each job runs on its own fixed interval for the process lifetime and is
cancelled on shutdown. A failing run is logged; the next run still happens.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ppid_bot.core.logging import generate_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)


@dataclass
class PeriodicJob:
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[object]]
    run_immediately: bool = False


class BackgroundScheduler:
    def __init__(self) -> None:
        self._jobs: list[PeriodicJob] = []
        self._tasks: dict[str, asyncio.Task] = {}

    def add_job(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
        run_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval for {name} must be positive")
        self._jobs.append(PeriodicJob(name, interval_seconds, func, run_immediately))

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def job_names(self) -> list[str]:
        return [job.name for job in self._jobs]

    def start(self) -> None:
        for job in self._jobs:
            if job.name in self._tasks and not self._tasks[job.name].done():
                continue
            self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"job-{job.name}")
        logger.info("Scheduler started", extra_data={"jobs": self.job_names()})

    async def _loop(self, job: PeriodicJob) -> None:
        if not job.run_immediately:
            await asyncio.sleep(job.interval_seconds)
        while True:
            await self.run_once(job.name)
            await asyncio.sleep(job.interval_seconds)

    async def run_once(self, name: str) -> Optional[object]:
        job = next(j for j in self._jobs if j.name == name)
        set_correlation_id(generate_correlation_id())
        try:
            return await job.func()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Scheduled job failed",
                extra_data={"job": job.name, "error": str(exc)},
                exc_info=True,
            )
            return None

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")
