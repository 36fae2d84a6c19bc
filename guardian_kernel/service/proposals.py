"""
Proposal Service — the operations exposed to the surrounding system.

Wires the pure components to persistence and the custody collaborator:

  create:  validate → authorize → rate limit → reproposal cooldown
           → classify + assign status → persist → apply if auto-applied
  respond / dispute / cancel cooling:
           load → authorize → guarded transition → compare-and-swap → side effects
  sweep:   expire stale pending proposals, complete elapsed cooling periods

Every operation returns a ProposalResult. Guard violations come back as an
error code and message; they never escape as exceptions.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from guardian_kernel.cooldown.guard import CooldownGuard, ProposalRateLimiter
from guardian_kernel.custody.directory import GuardianDirectory
from guardian_kernel.lifecycle.machine import ProposalLifecycle, ResponseAction
from guardian_kernel.models.errors import ProposalError, ProposalErrorCode, ProposalResult
from guardian_kernel.models.policy import ProposalPolicy
from guardian_kernel.models.proposal import (
    DisputeResolution,
    ProposalStatus,
    SafetySettingsProposal,
    SafetySettingType,
    SettingValue,
)
from guardian_kernel.settings.store import SettingsStore
from guardian_kernel.store.proposal_store import ProposalStore
from guardian_kernel.validation.inputs import (
    parse_cancel_cooling_input,
    parse_create_input,
    parse_dispute_input,
    parse_respond_input,
)
from guardian_kernel.windows.calculator import TimeWindowCalculator

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Statuses a sweep may move out of.
SWEEPABLE_STATUSES = (ProposalStatus.PENDING, ProposalStatus.COOLING_IN_PROGRESS)


def _new_proposal_id() -> str:
    return f"prop_{uuid4().hex[:12]}"


class ProposalService:
    """Dual-approval workflow for a child's safety settings."""

    def __init__(
        self,
        store: ProposalStore,
        directory: GuardianDirectory,
        settings_store: Optional[SettingsStore] = None,
        policy: Optional[ProposalPolicy] = None,
        id_factory: Callable[[], str] = _new_proposal_id,
    ):
        self.store = store
        self.directory = directory
        self.settings = settings_store or SettingsStore()
        self.policy = policy or ProposalPolicy()
        self.windows = TimeWindowCalculator(self.policy)
        self.lifecycle = ProposalLifecycle(self.windows)
        self.cooldown = CooldownGuard(self.windows)
        self.rate_limiter = ProposalRateLimiter(self.policy)
        self._new_id = id_factory

    # --- Creation ---

    def create_proposal(
        self,
        child_id: str,
        proposed_by: str,
        setting_type: SafetySettingType,
        proposed_value: SettingValue,
        now: datetime,
    ) -> ProposalResult:
        parsed = parse_create_input({
            "child_id": child_id,
            "proposed_by": proposed_by,
            "setting_type": setting_type,
            "proposed_value": proposed_value,
        })
        if not parsed.ok:
            return ProposalResult.failure(parsed.error, parsed.detail)
        request = parsed.value

        if not self.directory.is_guardian(child_id, proposed_by):
            return self._reject("create", proposed_by, ProposalErrorCode.NOT_GUARDIAN)
        if not self.directory.is_shared_custody(child_id):
            return self._reject("create", proposed_by, ProposalErrorCode.NOT_SHARED_CUSTODY)
        if not self.rate_limiter.check(proposed_by, now):
            return self._reject("create", proposed_by, ProposalErrorCode.RATE_LIMIT)

        declined = self.store.query(
            child_id=child_id,
            setting_type=request.setting_type,
            status=ProposalStatus.DECLINED,
        )
        if not self.cooldown.can_propose(request.setting_type, child_id, declined, now):
            allowed_at = self.cooldown.next_allowed_at(request.setting_type, child_id, declined)
            return self._reject(
                "create",
                proposed_by,
                ProposalErrorCode.COOLDOWN_ACTIVE,
                f"This setting was recently declined. You can propose it again after "
                f"{allowed_at.isoformat()}.",
            )

        proposal = self.lifecycle.create(
            proposal_id=self._new_id(),
            child_id=child_id,
            proposed_by=proposed_by,
            setting_type=request.setting_type,
            current_value=self.settings.get_value(child_id, request.setting_type),
            proposed_value=request.proposed_value,
            now=now,
        )
        self.store.insert(proposal)
        self.rate_limiter.record(proposed_by, now)
        self.store.record_event(proposal, "create", proposed_by, None, now)

        if proposal.status == ProposalStatus.AUTO_APPLIED:
            self.settings.apply(child_id, proposal.setting_type, proposal.proposed_value)

        logger.info(
            "Proposal %s created by %s for child %s: %s %r -> %r (%s)",
            proposal.id,
            proposed_by,
            child_id,
            proposal.setting_type.value,
            proposal.current_value,
            proposal.proposed_value,
            proposal.status.value,
        )
        return ProposalResult.success(proposal)

    # --- Guardian actions ---

    def respond_to_proposal(
        self,
        proposal_id: str,
        actor_id: str,
        action: ResponseAction,
        now: datetime,
        message: Optional[str] = None,
    ) -> ProposalResult:
        parsed = parse_respond_input({
            "proposal_id": proposal_id,
            "actor_id": actor_id,
            "action": action,
            "message": message,
        })
        if not parsed.ok:
            return ProposalResult.failure(parsed.error, parsed.detail)
        request = parsed.value

        return self._guardian_transition(
            request.proposal_id,
            request.actor_id,
            request.action.value,
            now,
            lambda p: self.lifecycle.respond(
                p, request.actor_id, request.action, now, request.message
            ),
        )

    def dispute_proposal(
        self,
        proposal_id: str,
        actor_id: str,
        now: datetime,
        reason: Optional[str] = None,
    ) -> ProposalResult:
        parsed = parse_dispute_input({
            "proposal_id": proposal_id,
            "actor_id": actor_id,
            "reason": reason,
        })
        if not parsed.ok:
            return ProposalResult.failure(parsed.error, parsed.detail)
        request = parsed.value

        return self._guardian_transition(
            request.proposal_id,
            request.actor_id,
            "dispute",
            now,
            lambda p: self.lifecycle.dispute(p, request.actor_id, now, request.reason),
        )

    def cancel_cooling_period(
        self, proposal_id: str, actor_id: str, now: datetime
    ) -> ProposalResult:
        parsed = parse_cancel_cooling_input({"proposal_id": proposal_id, "actor_id": actor_id})
        if not parsed.ok:
            return ProposalResult.failure(parsed.error, parsed.detail)
        request = parsed.value

        return self._guardian_transition(
            request.proposal_id,
            request.actor_id,
            "cancel_cooling",
            now,
            lambda p: self.lifecycle.cancel_cooling(p, request.actor_id, now),
        )

    # --- Administrative ---

    def resolve_dispute(
        self,
        proposal_id: str,
        resolver_id: str,
        resolution: DisputeResolution,
        now: datetime,
    ) -> ProposalResult:
        """Administrative close of a dispute. No guardian checks apply."""
        try:
            resolution = DisputeResolution(resolution)
        except ValueError:
            return ProposalResult.failure(
                ProposalErrorCode.INVALID_VALUE, f"Unknown resolution: {resolution!r}"
            )
        return self._transition(
            proposal_id,
            resolver_id,
            f"resolve_{resolution.value}",
            now,
            lambda p: self.lifecycle.resolve_dispute(p, resolver_id, resolution, now),
        )

    # --- System sweep ---

    def sweep_expired_and_completed(self, now: datetime) -> List[SafetySettingsProposal]:
        """
        Expire stale pending proposals and complete elapsed cooling periods.

        Safe to run concurrently and redundantly: a record another worker has
        already moved is skipped.
        """
        transitioned = []
        for proposal in self.store.list_by_statuses(SWEEPABLE_STATUSES):
            updated = self.lifecycle.sweep_one(proposal, now)
            if updated is None:
                continue
            if not self.store.compare_and_swap(updated, proposal.status, proposal.version):
                logger.debug("Sweep skipped %s: already transitioned elsewhere", proposal.id)
                continue
            self._after_transition(proposal, updated, f"sweep_{updated.status.value}", SYSTEM_ACTOR, now)
            transitioned.append(updated)

        if transitioned:
            logger.info("Sweep at %s transitioned %d proposal(s)", now.isoformat(), len(transitioned))
        return transitioned

    # --- Queries ---

    def get_proposal(self, proposal_id: str) -> ProposalResult:
        proposal = self.store.get(proposal_id)
        if proposal is None:
            return ProposalResult.failure(ProposalErrorCode.NOT_FOUND)
        return ProposalResult.success(proposal)

    def list_proposals(
        self,
        child_id: str,
        status: Optional[ProposalStatus] = None,
    ) -> List[SafetySettingsProposal]:
        return self.store.query(child_id=child_id, status=status)

    def get_pending_proposals(self, child_id: str, now: datetime) -> List[SafetySettingsProposal]:
        """Pending proposals that can still be answered (stale ones are left out)."""
        return [
            p for p in self.store.query(child_id=child_id, status=ProposalStatus.PENDING)
            if self.lifecycle.can_respond(p, now)
        ]

    # --- Internals ---

    def _reject(
        self,
        action: str,
        actor_id: str,
        code: ProposalErrorCode,
        message: Optional[str] = None,
        proposal_id: Optional[str] = None,
    ) -> ProposalResult:
        logger.warning(
            "Rejected %s by %s%s: %s",
            action,
            actor_id,
            f" on {proposal_id}" if proposal_id else "",
            code.value,
        )
        return ProposalResult.failure(code, message)

    def _guardian_transition(
        self,
        proposal_id: str,
        actor_id: str,
        action: str,
        now: datetime,
        apply: Callable[[SafetySettingsProposal], SafetySettingsProposal],
    ) -> ProposalResult:
        proposal = self.store.get(proposal_id)
        if proposal is None:
            return ProposalResult.failure(ProposalErrorCode.NOT_FOUND)
        if not self.directory.is_guardian(proposal.child_id, actor_id):
            return self._reject(action, actor_id, ProposalErrorCode.NOT_GUARDIAN, proposal_id=proposal_id)
        return self._transition(proposal_id, actor_id, action, now, apply, proposal)

    def _transition(
        self,
        proposal_id: str,
        actor_id: str,
        action: str,
        now: datetime,
        apply: Callable[[SafetySettingsProposal], SafetySettingsProposal],
        proposal: Optional[SafetySettingsProposal] = None,
    ) -> ProposalResult:
        """Run a guarded transition and persist it with compare-and-swap."""
        if proposal is None:
            proposal = self.store.get(proposal_id)
            if proposal is None:
                return ProposalResult.failure(ProposalErrorCode.NOT_FOUND)

        try:
            updated = apply(proposal)
        except ProposalError as exc:
            return self._reject(action, actor_id, exc.code, exc.detail, proposal_id)

        if not self.store.compare_and_swap(updated, proposal.status, proposal.version):
            # Lost a race. Re-read so the caller sees why (e.g. already cancelled).
            latest = self.store.get(proposal_id)
            try:
                apply(latest)
            except ProposalError as exc:
                return self._reject(action, actor_id, exc.code, exc.detail, proposal_id)
            return self._reject(action, actor_id, ProposalErrorCode.ALREADY_RESPONDED, proposal_id=proposal_id)

        self._after_transition(proposal, updated, action, actor_id, now)
        return ProposalResult.success(updated)

    def _after_transition(
        self,
        before: SafetySettingsProposal,
        after: SafetySettingsProposal,
        action: str,
        actor_id: str,
        now: datetime,
    ) -> None:
        """Audit the transition and keep effective settings in step with it."""
        self.store.record_event(after, action, actor_id, before.status, now)

        if after.status in (ProposalStatus.APPROVED, ProposalStatus.COOLING_COMPLETED):
            self.settings.apply(after.child_id, after.setting_type, after.proposed_value)
        elif after.status == ProposalStatus.REVERTED:
            self.settings.restore(
                after.child_id, after.setting_type, after.current_value, after.proposed_value
            )

        logger.info(
            "Proposal %s: %s -> %s by %s (%s)",
            after.id,
            before.status.value,
            after.status.value,
            actor_id,
            action,
        )
