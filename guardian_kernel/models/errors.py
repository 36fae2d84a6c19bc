"""Error taxonomy and the result envelope returned to callers."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel

from guardian_kernel.models.proposal import SafetySettingsProposal


class ProposalErrorCode(str, Enum):
    NOT_FOUND = "not-found"
    NOT_GUARDIAN = "not-guardian"
    NOT_SHARED_CUSTODY = "not-shared-custody"
    PROPOSAL_EXPIRED = "proposal-expired"
    ALREADY_RESPONDED = "already-responded"
    CANNOT_RESPOND_OWN = "cannot-respond-own"
    COOLDOWN_ACTIVE = "cooldown-active"
    DISPUTE_EXPIRED = "dispute-expired"
    CANNOT_DISPUTE_OWN = "cannot-dispute-own"
    RATE_LIMIT = "rate-limit"
    INVALID_SETTING = "invalid-setting"
    INVALID_VALUE = "invalid-value"
    NOT_IN_COOLING_PERIOD = "not-in-cooling-period"
    COOLING_PERIOD_EXPIRED = "cooling-period-expired"
    COOLING_ALREADY_CANCELLED = "cooling-already-cancelled"


# Plain-language messages shown to guardians.
ERROR_MESSAGES: Dict[ProposalErrorCode, str] = {
    ProposalErrorCode.NOT_FOUND: "Could not find the proposal.",
    ProposalErrorCode.NOT_GUARDIAN: "You must be a guardian of this child to make this change.",
    ProposalErrorCode.NOT_SHARED_CUSTODY: (
        "This child is not in shared custody. Changes apply immediately."
    ),
    ProposalErrorCode.PROPOSAL_EXPIRED: "This proposal has expired. You can create a new one.",
    ProposalErrorCode.ALREADY_RESPONDED: "Someone already responded to this proposal.",
    ProposalErrorCode.CANNOT_RESPOND_OWN: "You cannot approve or decline your own proposal.",
    ProposalErrorCode.COOLDOWN_ACTIVE: (
        "This setting was recently declined. Please wait 7 days before proposing again."
    ),
    ProposalErrorCode.DISPUTE_EXPIRED: "The 48-hour dispute window has passed.",
    ProposalErrorCode.CANNOT_DISPUTE_OWN: "You cannot dispute your own proposal.",
    ProposalErrorCode.RATE_LIMIT: "You have made too many proposals. Please wait an hour.",
    ProposalErrorCode.INVALID_SETTING: "The setting type is not valid.",
    ProposalErrorCode.INVALID_VALUE: "The proposed value is not valid for this setting.",
    ProposalErrorCode.NOT_IN_COOLING_PERIOD: "This change is not waiting in a cooling period.",
    ProposalErrorCode.COOLING_PERIOD_EXPIRED: (
        "The 48-hour cooling period is over. The change has taken effect."
    ),
    ProposalErrorCode.COOLING_ALREADY_CANCELLED: "This change was already cancelled.",
}


def get_error_message(code: ProposalErrorCode) -> str:
    return ERROR_MESSAGES[code]


class ProposalError(Exception):
    """A guarded action was attempted outside its guard. Recoverable."""

    def __init__(self, code: ProposalErrorCode, detail: Optional[str] = None):
        self.code = code
        self.detail = detail or ERROR_MESSAGES[code]
        super().__init__(f"{code.value}: {self.detail}")


class ProposalResult(BaseModel):
    """
    What every service operation hands back.

    Either `proposal` is set (ok) or `error_code` + `error_message` are.
    """

    ok: bool
    proposal: Optional[SafetySettingsProposal] = None
    error_code: Optional[ProposalErrorCode] = None      # Machine-readable
    error_message: Optional[str] = None                 # Human-readable

    @classmethod
    def success(cls, proposal: SafetySettingsProposal) -> "ProposalResult":
        return cls(ok=True, proposal=proposal)

    @classmethod
    def failure(cls, code: ProposalErrorCode, message: Optional[str] = None) -> "ProposalResult":
        return cls(ok=False, error_code=code, error_message=message or ERROR_MESSAGES[code])
