"""
Time Window Calculator — deadline arithmetic for the proposal workflow.

Never reads a wall clock: every function takes its anchor instant (and `now`,
where relevant) explicitly.

  response window      created_at + 72h   (pending proposal expires)
  dispute window       applied_at + 48h   (emergency increase may be disputed)
  cooling period       starts_at  + 48h   (approved reduction takes effect)
  reproposal cooldown  declined_at + 7d   (same setting may be proposed again)
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from guardian_kernel.models.policy import ProposalPolicy


class WindowName(str, Enum):
    RESPONSE = "response"
    DISPUTE = "dispute"
    COOLING = "cooling"
    COOLDOWN = "cooldown"


class TimeWindowCalculator:
    """Pure deadline arithmetic over a ProposalPolicy."""

    def __init__(self, policy: Optional[ProposalPolicy] = None):
        self.policy = policy or ProposalPolicy()

    def window(self, name: WindowName) -> timedelta:
        if name == WindowName.RESPONSE:
            return self.policy.response_window
        if name == WindowName.DISPUTE:
            return self.policy.dispute_window
        if name == WindowName.COOLING:
            return self.policy.cooling_period
        if name == WindowName.COOLDOWN:
            return self.policy.reproposal_cooldown
        raise ValueError(f"Unknown window: {name!r}")

    def deadline(self, name: WindowName, anchor: datetime) -> datetime:
        return anchor + self.window(name)

    def expiry(self, created_at: datetime) -> datetime:
        return self.deadline(WindowName.RESPONSE, created_at)

    def dispute_deadline(self, applied_at: datetime) -> datetime:
        return self.deadline(WindowName.DISPUTE, applied_at)

    def cooling_end(self, starts_at: datetime) -> datetime:
        return self.deadline(WindowName.COOLING, starts_at)

    def reproposal_allowed_at(self, declined_at: datetime) -> datetime:
        return self.deadline(WindowName.COOLDOWN, declined_at)

    @staticmethod
    def remaining(deadline: datetime, now: datetime) -> timedelta:
        """Time left until `deadline`, never negative."""
        return max(timedelta(0), deadline - now)

    @staticmethod
    def is_open(deadline: datetime, now: datetime) -> bool:
        """A window is open strictly before its deadline."""
        return now < deadline
