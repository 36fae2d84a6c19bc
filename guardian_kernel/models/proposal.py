"""Safety Settings Proposal — a requested change to one supervision setting.

A proposal carries its own approval state machine. Once terminal it is an
immutable audit trail entry and is never deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field, conint, constr, model_validator


ID_MAX_LENGTH = 128
VALUE_TEXT_MAX_LENGTH = 256
MESSAGE_MAX_LENGTH = 500


class SafetySettingType(str, Enum):
    MONITORING_INTERVAL = "monitoring_interval"     # Minutes between captures
    RETENTION_PERIOD = "retention_period"           # Days captures are kept
    AGE_RESTRICTION = "age_restriction"             # Content age gate
    SCREEN_TIME_DAILY = "screen_time_daily"         # Minutes per day
    SCREEN_TIME_PER_APP = "screen_time_per_app"     # Minutes per app per day
    BEDTIME_START = "bedtime_start"                 # Minutes past midnight
    BEDTIME_END = "bedtime_end"                     # Minutes past midnight
    CRISIS_ALLOWLIST = "crisis_allowlist"           # Crisis resource additions


SETTING_TYPE_LABELS: Dict[SafetySettingType, str] = {
    SafetySettingType.MONITORING_INTERVAL: "Monitoring interval",
    SafetySettingType.RETENTION_PERIOD: "Screenshot retention period",
    SafetySettingType.AGE_RESTRICTION: "Content age restriction",
    SafetySettingType.SCREEN_TIME_DAILY: "Daily screen time limit",
    SafetySettingType.SCREEN_TIME_PER_APP: "Per-app time limit",
    SafetySettingType.BEDTIME_START: "Bedtime start time",
    SafetySettingType.BEDTIME_END: "Bedtime end time",
    SafetySettingType.CRISIS_ALLOWLIST: "Crisis resource allowlist",
}


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"
    AUTO_APPLIED = "auto_applied"
    DISPUTED = "disputed"
    REVERTED = "reverted"
    COOLING_IN_PROGRESS = "cooling_in_progress"
    COOLING_CANCELLED = "cooling_cancelled"
    COOLING_COMPLETED = "cooling_completed"


PROPOSAL_STATUS_LABELS: Dict[ProposalStatus, str] = {
    ProposalStatus.PENDING: "Waiting for approval",
    ProposalStatus.APPROVED: "Approved and applied",
    ProposalStatus.DECLINED: "Declined by co-parent",
    ProposalStatus.EXPIRED: "Expired (no response)",
    ProposalStatus.AUTO_APPLIED: "Applied immediately (emergency)",
    ProposalStatus.DISPUTED: "Under dispute review",
    ProposalStatus.REVERTED: "Reverted to original",
    ProposalStatus.COOLING_IN_PROGRESS: "Waiting out cooling period",
    ProposalStatus.COOLING_CANCELLED: "Cancelled during cooling period",
    ProposalStatus.COOLING_COMPLETED: "Applied after cooling period",
}


class ChangeDirection(str, Enum):
    INCREASE = "increase"   # More protective
    DECREASE = "decrease"   # Less protective
    NEUTRAL = "neutral"     # Equal or unclassifiable


class DisputeResolution(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


# bool is listed first so JSON true/false never coerces into an int.
SettingValue = Union[
    bool,
    conint(strict=True, ge=0),
    constr(max_length=VALUE_TEXT_MAX_LENGTH),
]

GuardianId = constr(min_length=1, max_length=ID_MAX_LENGTH)


class DisputeRecord(BaseModel):
    """Present only once an emergency-increase proposal is disputed."""

    disputed_by: GuardianId
    disputed_at: datetime
    reason: Optional[str] = Field(default=None, max_length=MESSAGE_MAX_LENGTH)
    resolved_at: Optional[datetime] = None
    resolution: Optional[DisputeResolution] = None
    resolved_by: Optional[str] = None


class CoolingPeriod(BaseModel):
    """Present only for approved protection-decreasing proposals."""

    starts_at: datetime
    ends_at: datetime
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_window(self) -> "CoolingPeriod":
        if self.ends_at <= self.starts_at:
            raise ValueError("cooling period must end after it starts")
        return self


class SafetySettingsProposal(BaseModel):
    """
    A proposed change to one safety setting for one child.

    `version` increments on every transition and backs the store's
    compare-and-swap, so two guardians racing on the same record cannot both win.
    """

    id: GuardianId
    child_id: GuardianId
    proposed_by: GuardianId
    setting_type: SafetySettingType
    current_value: SettingValue
    proposed_value: SettingValue

    status: ProposalStatus
    created_at: datetime
    expires_at: datetime
    is_emergency_increase: bool

    responded_by: Optional[str] = Field(default=None, max_length=ID_MAX_LENGTH)
    responded_at: Optional[datetime] = None
    decline_message: Optional[str] = Field(default=None, max_length=MESSAGE_MAX_LENGTH)
    applied_at: Optional[datetime] = None

    dispute: Optional[DisputeRecord] = None
    cooling_period: Optional[CoolingPeriod] = None

    version: int = Field(ge=0, default=0)

    @model_validator(mode="after")
    def _check_invariants(self) -> "SafetySettingsProposal":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        if self.responded_by is not None and self.responded_by == self.proposed_by:
            raise ValueError("a guardian cannot respond to their own proposal")
        if self.dispute is not None and self.dispute.disputed_by == self.proposed_by:
            raise ValueError("a guardian cannot dispute their own proposal")
        if self.cooling_period is not None and self.cooling_period.cancelled_by:
            if self.cooling_period.cancelled_by not in (self.proposed_by, self.responded_by):
                raise ValueError("only a party to the proposal can cancel its cooling period")
        return self


class ProposalEvent(BaseModel):
    """One transition in the append-only, hash-chained audit trail."""

    id: str
    proposal_id: str
    action: str                             # "create" | "approve" | "sweep_expire" | ...
    actor: str                              # Guardian id, "system" or an administrator
    from_status: Optional[ProposalStatus] = None
    to_status: ProposalStatus
    occurred_at: datetime
    signature: str = ""
    prior_event_hash: Optional[str] = None
