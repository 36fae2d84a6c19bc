"""
Cooldown Guard — anti-spam checks run before a proposal is created.

- Reproposal cooldown: after a decline, the same setting cannot be proposed
  again for the same child until 7 days have passed since the decline.
- Rate limit: at most 10 proposal creations per guardian per rolling hour.
"""

from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterable, Optional

from guardian_kernel.models.policy import ProposalPolicy
from guardian_kernel.models.proposal import (
    ProposalStatus,
    SafetySettingsProposal,
    SafetySettingType,
)
from guardian_kernel.windows.calculator import TimeWindowCalculator


def most_recent_decline(
    setting_type: SafetySettingType,
    child_id: str,
    history: Iterable[SafetySettingsProposal],
) -> Optional[SafetySettingsProposal]:
    """The latest declined proposal (by response time) for this child and setting."""
    declined = [
        p for p in history
        if p.child_id == child_id
        and p.setting_type == setting_type
        and p.status == ProposalStatus.DECLINED
        and p.responded_at is not None
    ]
    if not declined:
        return None
    return max(declined, key=lambda p: p.responded_at)


class CooldownGuard:
    """Decides whether a new proposal for a setting may be created."""

    def __init__(self, calculator: Optional[TimeWindowCalculator] = None):
        self.windows = calculator or TimeWindowCalculator()

    def next_allowed_at(
        self,
        setting_type: SafetySettingType,
        child_id: str,
        history: Iterable[SafetySettingsProposal],
    ) -> Optional[datetime]:
        """When the reproposal cooldown lifts, or None if there is none."""
        latest = most_recent_decline(setting_type, child_id, history)
        if latest is None:
            return None
        return self.windows.reproposal_allowed_at(latest.responded_at)

    def can_propose(
        self,
        setting_type: SafetySettingType,
        child_id: str,
        history: Iterable[SafetySettingsProposal],
        now: datetime,
    ) -> bool:
        allowed_at = self.next_allowed_at(setting_type, child_id, history)
        return allowed_at is None or now >= allowed_at


class ProposalRateLimiter:
    """
    Sliding-window counter of proposal creations per guardian.

    In-process state; a multi-worker deployment needs a shared counter.
    """

    def __init__(self, policy: Optional[ProposalPolicy] = None):
        self.policy = policy or ProposalPolicy()
        self._events: Dict[str, Deque[datetime]] = {}

    def _prune(self, guardian_id: str, now: datetime) -> int:
        """Drop events older than the window; returns how many remain."""
        events = self._events.get(guardian_id)
        if events is None:
            return 0
        cutoff = now - self.policy.rate_limit_window
        while events and events[0] <= cutoff:
            events.popleft()
        if not events:
            del self._events[guardian_id]
        return len(events)

    def count(self, guardian_id: str, now: datetime) -> int:
        return self._prune(guardian_id, now)

    def check(self, guardian_id: str, now: datetime) -> bool:
        """True if the guardian may create another proposal at `now`."""
        return self.count(guardian_id, now) < self.policy.max_proposals_per_window

    def record(self, guardian_id: str, now: datetime) -> None:
        self._prune(guardian_id, now)
        self._events.setdefault(guardian_id, deque()).append(now)

    def reset(self, guardian_id: Optional[str] = None) -> None:
        if guardian_id is None:
            self._events.clear()
        else:
            self._events.pop(guardian_id, None)
