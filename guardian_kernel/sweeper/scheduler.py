"""
Sweep Scheduler — runs the system-initiated transitions on a cron schedule.

Each tick expires stale pending proposals and completes elapsed cooling
periods. Ticks are idempotent, so overlapping or repeated runs are harmless.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from croniter import croniter

from guardian_kernel.models.proposal import SafetySettingsProposal
from guardian_kernel.service.proposals import ProposalService

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "*/5 * * * *"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SweepScheduler:
    """
    Drives ProposalService.sweep_expired_and_completed.

    `clock` is only read by the loop itself; `run_once` takes `now` explicitly.
    """

    def __init__(
        self,
        service: ProposalService,
        schedule: str = DEFAULT_SCHEDULE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid sweep schedule: {schedule!r}")
        self.service = service
        self.schedule = schedule
        self.clock = clock
        self._running = False
        self.last_run_at: Optional[datetime] = None
        self.last_transitioned = 0

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    def next_run_after(self, now: datetime) -> datetime:
        return croniter(self.schedule, now).get_next(datetime)

    def run_once(self, now: datetime) -> List[SafetySettingsProposal]:
        transitioned = self.service.sweep_expired_and_completed(now)
        self.last_run_at = now
        self.last_transitioned = len(transitioned)
        return transitioned

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run sweeps on schedule until `stop_event` is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                now = self.clock()
                try:
                    self.run_once(now)
                except Exception:
                    logger.exception("Proposal sweep failed at %s", now.isoformat())

                delay = (self.next_run_after(now) - now).total_seconds()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=max(delay, 0.0))
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
