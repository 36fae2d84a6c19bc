"""
End-to-end tests for the proposal service.

Walks the dual-approval workflow for a shared-custody family:
guardian A proposes, guardian B responds, disputes or cancels,
and the sweep expires or completes what nobody acted on.
"""

from datetime import datetime, timedelta, timezone

import pytest

from guardian_kernel.custody.directory import InMemoryGuardianDirectory
from guardian_kernel.models.errors import ProposalErrorCode
from guardian_kernel.models.policy import ProposalPolicy
from guardian_kernel.models.proposal import (
    DisputeResolution,
    ProposalStatus,
    SafetySettingType,
)
from guardian_kernel.service.proposals import ProposalService
from guardian_kernel.settings.store import DEFAULT_SETTINGS, SettingsStore
from guardian_kernel.store.proposal_store import ProposalStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
A = "guardian_a"
B = "guardian_b"
CHILD = "child_1"


def _hours(n: float) -> timedelta:
    return timedelta(hours=n)


def _make_service(policy=None) -> ProposalService:
    directory = InMemoryGuardianDirectory()
    directory.register_child(CHILD, [A, B])
    directory.register_child("child_solo", [A], shared_custody=False)

    defaults = dict(DEFAULT_SETTINGS)
    defaults[SafetySettingType.MONITORING_INTERVAL] = 30
    defaults[SafetySettingType.SCREEN_TIME_DAILY] = 60

    counter = iter(range(1, 1000))
    return ProposalService(
        store=ProposalStore(db_path=":memory:"),
        directory=directory,
        settings_store=SettingsStore(defaults),
        policy=policy,
        id_factory=lambda: f"prop_{next(counter)}",
    )


def _screen_time_value(service: ProposalService):
    return service.settings.get_value(CHILD, SafetySettingType.SCREEN_TIME_DAILY)


class TestScenarios:
    def setup_method(self):
        self.service = _make_service()

    def _propose_more_screen_time(self):
        result = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0)
        assert result.ok
        return result.proposal

    def test_emergency_increase_is_auto_applied(self):
        result = self.service.create_proposal(CHILD, A, SafetySettingType.MONITORING_INTERVAL, 15, T0)

        assert result.ok
        assert result.proposal.is_emergency_increase is True
        assert result.proposal.status == ProposalStatus.AUTO_APPLIED
        assert result.proposal.applied_at == T0
        assert self.service.settings.get_value(CHILD, SafetySettingType.MONITORING_INTERVAL) == 15

    def test_decrease_waits_for_approval(self):
        proposal = self._propose_more_screen_time()

        assert proposal.status == ProposalStatus.PENDING
        assert proposal.expires_at == proposal.created_at + _hours(72)
        assert proposal.current_value == 60
        assert _screen_time_value(self.service) == 60

    def test_approved_decrease_enters_cooling(self):
        proposal = self._propose_more_screen_time()
        now = T0 + _hours(10)

        result = self.service.respond_to_proposal(proposal.id, B, "approve", now)

        assert result.ok
        assert result.proposal.status == ProposalStatus.COOLING_IN_PROGRESS
        assert result.proposal.cooling_period.starts_at == now
        assert result.proposal.cooling_period.ends_at == now + _hours(48)
        assert _screen_time_value(self.service) == 60

    def test_proposer_cancels_cooling(self):
        proposal = self._propose_more_screen_time()
        start = T0 + _hours(10)
        self.service.respond_to_proposal(proposal.id, B, "approve", start)

        result = self.service.cancel_cooling_period(proposal.id, A, start + _hours(20))

        assert result.ok
        assert result.proposal.status == ProposalStatus.COOLING_CANCELLED
        assert _screen_time_value(self.service) == 60
        # Nothing left for the sweep to complete.
        assert self.service.sweep_expired_and_completed(start + _hours(60)) == []
        assert _screen_time_value(self.service) == 60

    def test_unanswered_proposal_expires(self):
        proposal = self._propose_more_screen_time()

        swept = self.service.sweep_expired_and_completed(T0 + _hours(73))

        assert [p.id for p in swept] == [proposal.id]
        assert self.service.get_proposal(proposal.id).proposal.status == ProposalStatus.EXPIRED

    def test_other_guardian_disputes_emergency_increase(self):
        created = self.service.create_proposal(CHILD, A, SafetySettingType.MONITORING_INTERVAL, 15, T0)

        result = self.service.dispute_proposal(created.proposal.id, B, T0 + _hours(10))

        assert result.ok
        assert result.proposal.status == ProposalStatus.DISPUTED
        assert result.proposal.dispute.disputed_by == B


class TestCreateProposal:
    def setup_method(self):
        self.service = _make_service()

    def test_unknown_setting(self):
        result = self.service.create_proposal(CHILD, A, "wifi_password", 1, T0)
        assert result.error_code == ProposalErrorCode.INVALID_SETTING

    def test_invalid_value(self):
        result = self.service.create_proposal(CHILD, A, "screen_time_daily", -10, T0)
        assert result.error_code == ProposalErrorCode.INVALID_VALUE
        assert self.service.store.count() == 0

    def test_non_guardian(self):
        result = self.service.create_proposal(CHILD, "stranger", "screen_time_daily", 90, T0)
        assert result.error_code == ProposalErrorCode.NOT_GUARDIAN

    def test_sole_custody(self):
        result = self.service.create_proposal("child_solo", A, "screen_time_daily", 90, T0)
        assert result.error_code == ProposalErrorCode.NOT_SHARED_CUSTODY

    def test_rate_limit(self):
        for minute in range(10):
            assert self.service.create_proposal(
                CHILD, A, "age_restriction", 13, T0 + timedelta(minutes=minute)
            ).ok
        result = self.service.create_proposal(CHILD, A, "age_restriction", 13, T0 + _hours(0.5))
        assert result.error_code == ProposalErrorCode.RATE_LIMIT
        assert self.service.create_proposal(CHILD, B, "age_restriction", 13, T0 + _hours(0.5)).ok

    def test_reproposal_cooldown_after_decline(self):
        proposal = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal
        declined_at = T0 + _hours(1)
        self.service.respond_to_proposal(proposal.id, B, "decline", declined_at, message="No")

        blocked = self.service.create_proposal(
            CHILD, A, "screen_time_daily", 90, declined_at + timedelta(days=6, hours=23, minutes=59)
        )
        assert blocked.error_code == ProposalErrorCode.COOLDOWN_ACTIVE
        assert (declined_at + timedelta(days=7)).isoformat() in blocked.error_message

        allowed = self.service.create_proposal(CHILD, A, "screen_time_daily", 90, declined_at + timedelta(days=7))
        assert allowed.ok

    def test_crisis_allowlist_entry_applied(self):
        result = self.service.create_proposal(CHILD, A, "crisis_allowlist", "988lifeline.org", T0)
        assert result.proposal.status == ProposalStatus.AUTO_APPLIED
        assert result.proposal.current_value == ""
        assert self.service.settings.get_allowlist(CHILD) == ["988lifeline.org"]

    def test_creation_is_audited(self):
        proposal = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal
        events = self.service.store.events_for(proposal.id)
        assert [(e.action, e.actor, e.to_status) for e in events] == [
            ("create", A, ProposalStatus.PENDING)
        ]


class TestGuardianActions:
    def setup_method(self):
        self.service = _make_service()
        self.pending = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal

    def test_not_found(self):
        result = self.service.respond_to_proposal("prop_missing", B, "approve", T0)
        assert result.error_code == ProposalErrorCode.NOT_FOUND

    def test_non_guardian_cannot_respond(self):
        result = self.service.respond_to_proposal(self.pending.id, "stranger", "approve", T0)
        assert result.error_code == ProposalErrorCode.NOT_GUARDIAN

    def test_cannot_respond_own(self):
        result = self.service.respond_to_proposal(self.pending.id, A, "approve", T0 + _hours(1))
        assert result.error_code == ProposalErrorCode.CANNOT_RESPOND_OWN

    def test_unknown_action(self):
        result = self.service.respond_to_proposal(self.pending.id, B, "maybe", T0)
        assert result.error_code == ProposalErrorCode.INVALID_VALUE

    @pytest.mark.parametrize("action", ["approve", "decline"])
    def test_expired_proposal_rejects_every_response(self, action):
        self.service.sweep_expired_and_completed(T0 + _hours(73))
        result = self.service.respond_to_proposal(self.pending.id, B, action, T0 + _hours(74))
        assert result.error_code == ProposalErrorCode.PROPOSAL_EXPIRED

    def test_unswept_but_stale_proposal_is_expired(self):
        result = self.service.respond_to_proposal(self.pending.id, B, "approve", T0 + _hours(72))
        assert result.error_code == ProposalErrorCode.PROPOSAL_EXPIRED
        assert self.service.get_proposal(self.pending.id).proposal.status == ProposalStatus.PENDING

    def test_neutral_approval_applies_value(self):
        proposal = self.service.create_proposal(CHILD, A, "age_restriction", 13, T0).proposal
        result = self.service.respond_to_proposal(proposal.id, B, "approve", T0 + _hours(1))
        assert result.proposal.status == ProposalStatus.APPROVED
        assert result.proposal.applied_at == T0 + _hours(1)

    def test_pending_query_hides_stale_proposals(self):
        assert [p.id for p in self.service.get_pending_proposals(CHILD, T0 + _hours(1))] == [self.pending.id]
        assert self.service.get_pending_proposals(CHILD, T0 + _hours(72)) == []

    def test_list_proposals_by_status(self):
        self.service.respond_to_proposal(self.pending.id, B, "decline", T0 + _hours(1))
        assert [p.id for p in self.service.list_proposals(CHILD, ProposalStatus.DECLINED)] == [self.pending.id]
        assert self.service.list_proposals(CHILD, ProposalStatus.PENDING) == []
        assert len(self.service.list_proposals(CHILD)) == 1


class TestConcurrentResponses:
    def test_race_loser_gets_already_responded(self):
        service = _make_service()
        proposal = service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal

        # Both guardians' requests read the same version before either writes.
        stale = service.store.get(proposal.id)
        first = service.respond_to_proposal(proposal.id, B, "decline", T0 + _hours(1))
        assert first.ok

        approved = service.lifecycle.approve(stale, B, T0 + _hours(1))
        assert not service.store.compare_and_swap(approved, stale.status, stale.version)
        assert service.get_proposal(proposal.id).proposal.status == ProposalStatus.DECLINED

        second = service.respond_to_proposal(proposal.id, B, "approve", T0 + _hours(1))
        assert second.error_code == ProposalErrorCode.ALREADY_RESPONDED

    def test_lost_cas_reports_current_state(self):
        service = _make_service()
        proposal = service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal
        start = T0 + _hours(1)
        service.respond_to_proposal(proposal.id, B, "approve", start)

        cooling = service.store.get(proposal.id)
        cancelled = service.lifecycle.cancel_cooling(cooling, A, start + _hours(1))
        assert service.store.compare_and_swap(cancelled, cooling.status, cooling.version)

        result = service._transition(
            proposal.id,
            B,
            "cancel_cooling",
            start + _hours(1),
            lambda p: service.lifecycle.cancel_cooling(p, B, start + _hours(1)),
            cooling,
        )
        assert result.error_code == ProposalErrorCode.COOLING_ALREADY_CANCELLED


class TestDisputes:
    def setup_method(self):
        self.service = _make_service()
        self.increase = self.service.create_proposal(
            CHILD, A, "monitoring_interval", 15, T0
        ).proposal

    def test_cannot_dispute_own(self):
        result = self.service.dispute_proposal(self.increase.id, A, T0 + _hours(1))
        assert result.error_code == ProposalErrorCode.CANNOT_DISPUTE_OWN

    def test_dispute_window(self):
        result = self.service.dispute_proposal(self.increase.id, B, T0 + _hours(48))
        assert result.error_code == ProposalErrorCode.DISPUTE_EXPIRED

    def test_revert_restores_original_value(self):
        self.service.dispute_proposal(self.increase.id, B, T0 + _hours(1), reason="Too often")
        result = self.service.resolve_dispute(self.increase.id, "admin", "reverted", T0 + _hours(2))

        assert result.proposal.status == ProposalStatus.REVERTED
        assert self.service.settings.get_value(CHILD, SafetySettingType.MONITORING_INTERVAL) == 30

    def test_confirm_keeps_value(self):
        self.service.dispute_proposal(self.increase.id, B, T0 + _hours(1))
        result = self.service.resolve_dispute(
            self.increase.id, "admin", DisputeResolution.CONFIRMED, T0 + _hours(2)
        )
        assert result.proposal.status == ProposalStatus.AUTO_APPLIED
        assert self.service.settings.get_value(CHILD, SafetySettingType.MONITORING_INTERVAL) == 15

    def test_unknown_resolution(self):
        result = self.service.resolve_dispute(self.increase.id, "admin", "shrug", T0)
        assert result.error_code == ProposalErrorCode.INVALID_VALUE


class TestSweep:
    def setup_method(self):
        self.service = _make_service()

    def test_cooling_completion_applies_value(self):
        proposal = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal
        start = T0 + _hours(10)
        self.service.respond_to_proposal(proposal.id, B, "approve", start)

        assert self.service.sweep_expired_and_completed(start + _hours(47)) == []
        swept = self.service.sweep_expired_and_completed(start + _hours(48))

        assert [p.status for p in swept] == [ProposalStatus.COOLING_COMPLETED]
        assert swept[0].applied_at == start + _hours(48)
        assert _screen_time_value(self.service) == 120

    def test_sweep_is_idempotent(self):
        self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0)
        first = self.service.sweep_expired_and_completed(T0 + _hours(73))
        second = self.service.sweep_expired_and_completed(T0 + _hours(73))

        assert len(first) == 1
        assert second == []

    def test_sweep_transitions_are_audited(self):
        proposal = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal
        self.service.sweep_expired_and_completed(T0 + _hours(73))

        events = self.service.store.events_for(proposal.id)
        assert [(e.action, e.actor) for e in events] == [("create", A), ("sweep_expired", "system")]
        assert self.service.store.verify_chain_integrity()

    def test_custom_policy_windows(self):
        service = _make_service(ProposalPolicy(response_window_hours=1))
        proposal = service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal
        assert proposal.expires_at == T0 + _hours(1)
        assert len(service.sweep_expired_and_completed(T0 + _hours(1))) == 1


class TestGuardianTextLimits:
    """Over-long guardian text comes back as invalid-value and changes nothing."""

    def setup_method(self):
        self.service = _make_service()

    def test_long_decline_message(self):
        proposal = self.service.create_proposal(CHILD, A, "screen_time_daily", 120, T0).proposal

        result = self.service.respond_to_proposal(
            proposal.id, B, "decline", T0 + _hours(1), message="x" * 501
        )

        assert not result.ok
        assert result.error_code == ProposalErrorCode.INVALID_VALUE
        assert self.service.get_proposal(proposal.id).proposal.status == ProposalStatus.PENDING
        assert self.service.respond_to_proposal(
            proposal.id, B, "decline", T0 + _hours(1), message="x" * 500
        ).ok

    def test_long_dispute_reason(self):
        proposal = self.service.create_proposal(CHILD, A, "monitoring_interval", 15, T0).proposal

        result = self.service.dispute_proposal(proposal.id, B, T0 + _hours(1), reason="x" * 501)

        assert result.error_code == ProposalErrorCode.INVALID_VALUE
        assert self.service.get_proposal(proposal.id).proposal.status == ProposalStatus.AUTO_APPLIED

    def test_long_proposer_id(self):
        result = self.service.create_proposal(CHILD, "g" * 129, "screen_time_daily", 120, T0)
        assert result.error_code == ProposalErrorCode.INVALID_VALUE
        assert self.service.store.count() == 0

    def test_long_actor_id_on_cancel(self):
        result = self.service.cancel_cooling_period("prop_1", "g" * 129, T0)
        assert result.error_code == ProposalErrorCode.INVALID_VALUE
