"""In-process cron for morning, night and random broadcasts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional

from chinabot.services.broadcast import Broadcaster
from logger import get_logger

LOGGER = get_logger("broadcast.scheduler")


@dataclass(frozen=True, slots=True)
class CronJob:
    """Fires when ``hour``/``minute`` match; ``hour_step`` repeats every N hours."""

    occasion: str
    minute: int
    hour: Optional[int] = None
    hour_step: Optional[int] = None

    def matches(self, moment: datetime) -> bool:
        if moment.minute != self.minute:
            return False
        if self.hour is not None:
            return moment.hour == self.hour
        if self.hour_step:
            return moment.hour % self.hour_step == 0
        return True


DEFAULT_JOBS = (
    CronJob("morning", minute=30, hour=7),
    CronJob("night", minute=0, hour=23),
    CronJob("random", minute=0, hour_step=2),
)


class BroadcastScheduler:
    """Background loop polling the job table in the reference timezone."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        *,
        tz: tzinfo = timezone.utc,
        jobs: tuple[CronJob, ...] = DEFAULT_JOBS,
        interval_seconds: float = 20.0,
    ) -> None:
        self._broadcaster = broadcaster
        self._tz = tz
        self._jobs = jobs
        self._interval = interval_seconds
        self._fired: dict[str, str] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._runner())
            LOGGER.info("Broadcast scheduler started", stage="SCHEDULER")

    async def stop(self) -> None:
        if self._task:
            self._stop_event.set()
            await self._task
            self._task = None
            self._stop_event.clear()

    def due_occasions(self, now: Optional[datetime] = None) -> list[str]:
        """Return occasions due at ``now``; each slot is reported once."""

        moment = (now or datetime.now(timezone.utc)).astimezone(self._tz)
        slot = moment.strftime("%Y-%m-%dT%H:%M")
        due: list[str] = []
        for job in self._jobs:
            if job.matches(moment) and self._fired.get(job.occasion) != slot:
                self._fired[job.occasion] = slot
                due.append(job.occasion)
        return due

    async def tick(self, now: Optional[datetime] = None) -> None:
        for occasion in self.due_occasions(now):
            try:
                await self._broadcaster.broadcast_once(occasion, now=now)
            except Exception:
                LOGGER.exception("Scheduled broadcast failed", stage="SCHEDULER", payload={"occasion": occasion})

    async def _runner(self) -> None:
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
