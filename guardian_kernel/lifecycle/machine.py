"""
Proposal Lifecycle — the dual-approval state machine.

Behavioral Contract:
- Protection-increasing changes are auto-applied at creation and stay open to
  dispute by the other guardian for 48 hours.
- Everything else (decreases and neutral changes) waits for the other guardian
  for 72 hours. Approved decreases enter a 48-hour cooling period during which
  either party may cancel; approved neutral changes apply immediately.
- Every transition is all-or-nothing: it returns a new, re-validated proposal
  with `version + 1` or raises ProposalError and leaves the input untouched.
- System sweeps (expiry, cooling completion) are idempotent and never raise.

Transitions:

  pending             → approved | cooling_in_progress   guardian ≠ proposer, now < expires_at
  pending             → declined                         guardian ≠ proposer, now < expires_at
  pending             → expired                          sweep, now ≥ expires_at
  auto_applied        → disputed                         guardian ≠ proposer, now < dispute deadline
  disputed            → reverted | (confirmed)           administrative
  cooling_in_progress → cooling_cancelled                proposer or responder, now < ends_at
  cooling_in_progress → cooling_completed                sweep, now ≥ ends_at
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from guardian_kernel.models.errors import ProposalError, ProposalErrorCode
from guardian_kernel.models.proposal import (
    ChangeDirection,
    CoolingPeriod,
    DisputeRecord,
    DisputeResolution,
    ProposalStatus,
    SafetySettingsProposal,
    SafetySettingType,
    SettingValue,
)
from guardian_kernel.semantics.classifier import classify
from guardian_kernel.windows.calculator import TimeWindowCalculator


class ResponseAction(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"


# Statuses in which the proposed value is the one in force.
_LIVE_STATUSES = frozenset({
    ProposalStatus.APPROVED,
    ProposalStatus.AUTO_APPLIED,
    ProposalStatus.DISPUTED,
    ProposalStatus.COOLING_COMPLETED,
})


def _evolve(proposal: SafetySettingsProposal, **changes) -> SafetySettingsProposal:
    """Copy with changes, re-running model validation and bumping the version."""
    data = proposal.model_dump()
    data.update(changes)
    data["version"] = proposal.version + 1
    return SafetySettingsProposal.model_validate(data)


def effective_value(proposal: SafetySettingsProposal) -> SettingValue:
    """The value this proposal leaves in force for its setting."""
    if proposal.status in _LIVE_STATUSES:
        return proposal.proposed_value
    return proposal.current_value


class ProposalLifecycle:
    """Owns valid statuses, transitions and their guard conditions."""

    def __init__(self, calculator: Optional[TimeWindowCalculator] = None):
        self.windows = calculator or TimeWindowCalculator()

    # --- Creation ---

    def create(
        self,
        proposal_id: str,
        child_id: str,
        proposed_by: str,
        setting_type: SafetySettingType,
        current_value: SettingValue,
        proposed_value: SettingValue,
        now: datetime,
    ) -> SafetySettingsProposal:
        """
        Build a new proposal and assign its initial status.

        Increases are auto-applied at `now`; everything else is pending.
        """
        direction = classify(setting_type, current_value, proposed_value)
        is_increase = direction == ChangeDirection.INCREASE

        return SafetySettingsProposal(
            id=proposal_id,
            child_id=child_id,
            proposed_by=proposed_by,
            setting_type=setting_type,
            current_value=current_value,
            proposed_value=proposed_value,
            status=ProposalStatus.AUTO_APPLIED if is_increase else ProposalStatus.PENDING,
            created_at=now,
            expires_at=self.windows.expiry(now),
            is_emergency_increase=is_increase,
            applied_at=now if is_increase else None,
        )

    # --- Predicates ---

    def can_respond(self, proposal: SafetySettingsProposal, now: datetime) -> bool:
        return (
            proposal.status == ProposalStatus.PENDING
            and self.windows.is_open(proposal.expires_at, now)
        )

    def can_dispute(self, proposal: SafetySettingsProposal, now: datetime) -> bool:
        if proposal.status != ProposalStatus.AUTO_APPLIED or proposal.dispute is not None:
            return False
        if proposal.applied_at is None:
            return False
        return self.windows.is_open(self.windows.dispute_deadline(proposal.applied_at), now)

    def can_cancel_cooling(self, proposal: SafetySettingsProposal, now: datetime) -> bool:
        if proposal.status != ProposalStatus.COOLING_IN_PROGRESS:
            return False
        cooling = proposal.cooling_period
        if cooling is None or cooling.cancelled_at is not None:
            return False
        return self.windows.is_open(cooling.ends_at, now)

    def dispute_deadline(self, proposal: SafetySettingsProposal) -> Optional[datetime]:
        if not proposal.is_emergency_increase or proposal.applied_at is None:
            return None
        return self.windows.dispute_deadline(proposal.applied_at)

    # --- Guardian actions ---

    def respond(
        self,
        proposal: SafetySettingsProposal,
        actor_id: str,
        action: ResponseAction,
        now: datetime,
        message: Optional[str] = None,
    ) -> SafetySettingsProposal:
        action = ResponseAction(action)
        if action == ResponseAction.APPROVE:
            return self.approve(proposal, actor_id, now)
        return self.decline(proposal, actor_id, now, message)

    def _check_respondable(
        self, proposal: SafetySettingsProposal, actor_id: str, now: datetime
    ) -> None:
        if proposal.status == ProposalStatus.EXPIRED:
            raise ProposalError(ProposalErrorCode.PROPOSAL_EXPIRED)
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalError(ProposalErrorCode.ALREADY_RESPONDED)
        if actor_id == proposal.proposed_by:
            raise ProposalError(ProposalErrorCode.CANNOT_RESPOND_OWN)
        if not self.windows.is_open(proposal.expires_at, now):
            raise ProposalError(ProposalErrorCode.PROPOSAL_EXPIRED)

    def approve(
        self, proposal: SafetySettingsProposal, actor_id: str, now: datetime
    ) -> SafetySettingsProposal:
        """Approve a pending proposal. Reductions enter the cooling period."""
        self._check_respondable(proposal, actor_id, now)

        direction = classify(
            proposal.setting_type, proposal.current_value, proposal.proposed_value
        )
        if direction == ChangeDirection.DECREASE:
            return _evolve(
                proposal,
                status=ProposalStatus.COOLING_IN_PROGRESS,
                responded_by=actor_id,
                responded_at=now,
                cooling_period=CoolingPeriod(
                    starts_at=now,
                    ends_at=self.windows.cooling_end(now),
                ).model_dump(),
            )

        return _evolve(
            proposal,
            status=ProposalStatus.APPROVED,
            responded_by=actor_id,
            responded_at=now,
            applied_at=now,
        )

    def decline(
        self,
        proposal: SafetySettingsProposal,
        actor_id: str,
        now: datetime,
        message: Optional[str] = None,
    ) -> SafetySettingsProposal:
        self._check_respondable(proposal, actor_id, now)
        return _evolve(
            proposal,
            status=ProposalStatus.DECLINED,
            responded_by=actor_id,
            responded_at=now,
            decline_message=message,
        )

    def dispute(
        self,
        proposal: SafetySettingsProposal,
        actor_id: str,
        now: datetime,
        reason: Optional[str] = None,
    ) -> SafetySettingsProposal:
        """Contest an auto-applied emergency increase inside its dispute window."""
        if proposal.dispute is not None:
            raise ProposalError(
                ProposalErrorCode.ALREADY_RESPONDED,
                "This change has already been disputed.",
            )
        if proposal.status != ProposalStatus.AUTO_APPLIED:
            raise ProposalError(
                ProposalErrorCode.ALREADY_RESPONDED,
                "Only a change that was applied immediately can be disputed. "
                "Respond to a waiting proposal by approving or declining it.",
            )
        if actor_id == proposal.proposed_by:
            raise ProposalError(ProposalErrorCode.CANNOT_DISPUTE_OWN)
        if proposal.applied_at is None or not self.windows.is_open(
            self.windows.dispute_deadline(proposal.applied_at), now
        ):
            raise ProposalError(ProposalErrorCode.DISPUTE_EXPIRED)

        return _evolve(
            proposal,
            status=ProposalStatus.DISPUTED,
            dispute=DisputeRecord(
                disputed_by=actor_id,
                disputed_at=now,
                reason=reason,
            ).model_dump(),
        )

    def cancel_cooling(
        self, proposal: SafetySettingsProposal, actor_id: str, now: datetime
    ) -> SafetySettingsProposal:
        """Either party cancels an approved reduction before it takes effect."""
        if proposal.status == ProposalStatus.COOLING_CANCELLED:
            raise ProposalError(ProposalErrorCode.COOLING_ALREADY_CANCELLED)
        if proposal.status == ProposalStatus.COOLING_COMPLETED:
            raise ProposalError(ProposalErrorCode.COOLING_PERIOD_EXPIRED)
        if proposal.status != ProposalStatus.COOLING_IN_PROGRESS or proposal.cooling_period is None:
            raise ProposalError(ProposalErrorCode.NOT_IN_COOLING_PERIOD)
        if actor_id not in (proposal.proposed_by, proposal.responded_by):
            raise ProposalError(ProposalErrorCode.NOT_GUARDIAN)
        if not self.windows.is_open(proposal.cooling_period.ends_at, now):
            raise ProposalError(ProposalErrorCode.COOLING_PERIOD_EXPIRED)

        cooling = proposal.cooling_period.model_copy(
            update={"cancelled_by": actor_id, "cancelled_at": now}
        )
        return _evolve(
            proposal,
            status=ProposalStatus.COOLING_CANCELLED,
            cooling_period=cooling.model_dump(),
        )

    # --- Administrative ---

    def resolve_dispute(
        self,
        proposal: SafetySettingsProposal,
        resolver_id: str,
        resolution: DisputeResolution,
        now: datetime,
    ) -> SafetySettingsProposal:
        """
        Close a dispute. `confirmed` keeps the change live (back to auto_applied);
        `reverted` restores the original value.
        """
        resolution = DisputeResolution(resolution)
        if proposal.status != ProposalStatus.DISPUTED or proposal.dispute is None:
            raise ProposalError(
                ProposalErrorCode.ALREADY_RESPONDED,
                "Only a disputed change can be resolved.",
            )

        dispute = proposal.dispute.model_copy(update={
            "resolved_at": now,
            "resolution": resolution,
            "resolved_by": resolver_id,
        })
        status = (
            ProposalStatus.REVERTED
            if resolution == DisputeResolution.REVERTED
            else ProposalStatus.AUTO_APPLIED
        )
        return _evolve(proposal, status=status, dispute=dispute.model_dump())

    # --- System sweeps ---

    def expire(
        self, proposal: SafetySettingsProposal, now: datetime
    ) -> Optional[SafetySettingsProposal]:
        """pending → expired once the response window has passed. None = no-op."""
        if proposal.status != ProposalStatus.PENDING:
            return None
        if self.windows.is_open(proposal.expires_at, now):
            return None
        return _evolve(proposal, status=ProposalStatus.EXPIRED)

    def complete_cooling(
        self, proposal: SafetySettingsProposal, now: datetime
    ) -> Optional[SafetySettingsProposal]:
        """cooling_in_progress → cooling_completed once the period elapses. None = no-op."""
        if proposal.status != ProposalStatus.COOLING_IN_PROGRESS:
            return None
        if proposal.cooling_period is None:
            return None
        if self.windows.is_open(proposal.cooling_period.ends_at, now):
            return None
        return _evolve(
            proposal,
            status=ProposalStatus.COOLING_COMPLETED,
            applied_at=proposal.cooling_period.ends_at,
        )

    def sweep_one(
        self, proposal: SafetySettingsProposal, now: datetime
    ) -> Optional[SafetySettingsProposal]:
        """Apply whichever system transition is due, if any."""
        return self.expire(proposal, now) or self.complete_cooling(proposal, now)
