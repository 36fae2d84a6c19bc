"""Proposal policy — the fixed windows and limits of the dual-approval workflow."""

from datetime import timedelta

from pydantic import BaseModel, Field


RESPONSE_WINDOW = timedelta(hours=72)
DISPUTE_WINDOW = timedelta(hours=48)
COOLING_PERIOD = timedelta(hours=48)
REPROPOSAL_COOLDOWN = timedelta(days=7)

MAX_PROPOSALS_PER_WINDOW = 10
RATE_LIMIT_WINDOW = timedelta(hours=1)


class ProposalPolicy(BaseModel):
    """Windows and limits for the proposal workflow. Defaults are the policy."""

    response_window_hours: float = Field(gt=0, default=72)
    dispute_window_hours: float = Field(gt=0, default=48)
    cooling_period_hours: float = Field(gt=0, default=48)
    reproposal_cooldown_days: float = Field(gt=0, default=7)
    max_proposals_per_window: int = Field(ge=1, default=MAX_PROPOSALS_PER_WINDOW)
    rate_limit_window_seconds: int = Field(ge=1, default=3600)

    @property
    def response_window(self) -> timedelta:
        return timedelta(hours=self.response_window_hours)

    @property
    def dispute_window(self) -> timedelta:
        return timedelta(hours=self.dispute_window_hours)

    @property
    def cooling_period(self) -> timedelta:
        return timedelta(hours=self.cooling_period_hours)

    @property
    def reproposal_cooldown(self) -> timedelta:
        return timedelta(days=self.reproposal_cooldown_days)

    @property
    def rate_limit_window(self) -> timedelta:
        return timedelta(seconds=self.rate_limit_window_seconds)
