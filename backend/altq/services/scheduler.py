"""
Recurring background jobs on the application's event loop.

Every job runs once right away (to catch up on anything that expired while
the process was down) and then on a fixed interval until ``stop()``. A
failing tick is logged and the schedule carries on; the next tick is the
retry.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from altq.errors import SweepError
from altq.utils.timezone import Clock, isoformat_utc, utc_now

JobFunc = Callable[[], Awaitable[object]]


@dataclass
class Job:
    """A named recurring job and its run statistics."""
    name: str
    func: JobFunc
    interval_seconds: float
    runs: int = 0
    failures: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def status(self) -> dict:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "running": self.task is not None and not self.task.done(),
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": isoformat_utc(self.last_run_at),
            "last_error": self.last_error,
        }


class JobScheduler:
    """Owns the process-wide recurring jobs."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.jobs: dict[str, Job] = {}

    def add_job(self, name: str, func: JobFunc, interval_seconds: float) -> Job:
        if name in self.jobs:
            raise ValueError(f"Job {name!r} already registered")
        job = Job(name=name, func=func, interval_seconds=interval_seconds)
        self.jobs[name] = job
        return job

    async def run_once(self, job: Job) -> bool:
        """Run a single tick. Returns False if it failed."""
        job.runs += 1
        job.last_run_at = self.clock()
        try:
            await job.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failures += 1
            job.last_error = str(SweepError(f"{job.name}: {e}"))
            print(f"Scheduler: job {job.last_error}", flush=True)
            return False
        job.last_error = None
        return True

    async def _loop(self, job: Job) -> None:
        while True:
            await self.run_once(job)
            await asyncio.sleep(job.interval_seconds)

    def start(self) -> None:
        """Start every registered job that is not already running."""
        for job in self.jobs.values():
            if job.task is None or job.task.done():
                job.task = asyncio.create_task(self._loop(job), name=f"job:{job.name}")
                print(f"Scheduler: started {job.name} (every {job.interval_seconds:g}s)", flush=True)

    async def stop(self) -> None:
        """Cancel all jobs and wait for them to finish."""
        tasks = [job.task for job in self.jobs.values() if job.task and not job.task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        for job in self.jobs.values():
            job.task = None

    def status(self) -> list[dict]:
        return [job.status() for job in self.jobs.values()]
