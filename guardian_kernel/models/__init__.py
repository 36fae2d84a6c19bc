"""Guardian Kernel data models."""

from guardian_kernel.models.errors import (
    ERROR_MESSAGES,
    ProposalError,
    ProposalErrorCode,
    ProposalResult,
    get_error_message,
)
from guardian_kernel.models.policy import ProposalPolicy
from guardian_kernel.models.proposal import (
    PROPOSAL_STATUS_LABELS,
    SETTING_TYPE_LABELS,
    ChangeDirection,
    CoolingPeriod,
    DisputeRecord,
    DisputeResolution,
    ProposalEvent,
    ProposalStatus,
    SafetySettingsProposal,
    SafetySettingType,
    SettingValue,
)

__all__ = [
    "ChangeDirection",
    "CoolingPeriod",
    "DisputeRecord",
    "DisputeResolution",
    "ERROR_MESSAGES",
    "PROPOSAL_STATUS_LABELS",
    "ProposalError",
    "ProposalErrorCode",
    "ProposalEvent",
    "ProposalPolicy",
    "ProposalResult",
    "ProposalStatus",
    "SETTING_TYPE_LABELS",
    "SafetySettingType",
    "SafetySettingsProposal",
    "SettingValue",
    "get_error_message",
]
