"""Tests for proposal persistence, compare-and-swap and the audit chain."""

from datetime import datetime, timedelta, timezone

import pytest

from guardian_kernel.custody.directory import InMemoryGuardianDirectory
from guardian_kernel.lifecycle.machine import ProposalLifecycle
from guardian_kernel.models.proposal import ProposalStatus, SafetySettingType
from guardian_kernel.settings.store import DEFAULT_SETTINGS, SettingsStore
from guardian_kernel.store.proposal_store import ProposalStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    s = ProposalStore(db_path=":memory:")
    yield s
    s.close()


def _make_pending(proposal_id="prop_1", child_id="child_1", setting_type=SafetySettingType.SCREEN_TIME_DAILY):
    return ProposalLifecycle().create(proposal_id, child_id, "guardian_a", setting_type, 60, 120, T0)


class TestProposalStore:
    def test_insert_and_get(self, store):
        proposal = store.insert(_make_pending())
        loaded = store.get("prop_1")
        assert loaded == proposal
        assert store.get("missing") is None
        assert store.count() == 1

    def test_query_filters(self, store):
        store.insert(_make_pending("prop_1"))
        store.insert(_make_pending("prop_2", child_id="child_2"))
        store.insert(_make_pending("prop_3", setting_type=SafetySettingType.BEDTIME_START))

        assert [p.id for p in store.query(child_id="child_1")] == ["prop_1", "prop_3"]
        assert [p.id for p in store.query(
            child_id="child_1", setting_type=SafetySettingType.SCREEN_TIME_DAILY
        )] == ["prop_1"]
        assert store.query(status=ProposalStatus.DECLINED) == []
        assert len(store.list_by_statuses([ProposalStatus.PENDING])) == 3
        assert store.list_by_statuses([]) == []

    def test_compare_and_swap_single_winner(self, store):
        lifecycle = ProposalLifecycle()
        original = store.insert(_make_pending())

        approved = lifecycle.approve(original, "guardian_b", T0 + timedelta(hours=1))
        declined = lifecycle.decline(original, "guardian_b", T0 + timedelta(hours=1))

        assert store.compare_and_swap(approved, original.status, original.version)
        assert not store.compare_and_swap(declined, original.status, original.version)
        assert store.get("prop_1").status == ProposalStatus.COOLING_IN_PROGRESS
        assert store.get("prop_1").version == 1


class TestAuditChain:
    def test_events_are_chained(self, store):
        proposal = store.insert(_make_pending())
        first = store.record_event(proposal, "create", "guardian_a", None, T0)
        second = store.record_event(proposal, "decline", "guardian_b", ProposalStatus.PENDING, T0)

        assert first.prior_event_hash is None
        assert second.prior_event_hash == first.signature
        assert [e.action for e in store.events_for("prop_1")] == ["create", "decline"]
        assert store.verify_chain_integrity()

    def test_tampering_is_detected(self, store):
        proposal = store.insert(_make_pending())
        store.record_event(proposal, "create", "guardian_a", None, T0)
        store._conn.execute(
            "UPDATE proposal_events SET event_json = replace(event_json, 'guardian_a', 'guardian_x')"
        )
        assert not store.verify_chain_integrity()


class TestSettingsStore:
    def test_defaults_and_apply(self):
        settings = SettingsStore()
        assert settings.get_value("child_1", SafetySettingType.SCREEN_TIME_DAILY) == \
            DEFAULT_SETTINGS[SafetySettingType.SCREEN_TIME_DAILY]
        settings.apply("child_1", SafetySettingType.SCREEN_TIME_DAILY, 90)
        assert settings.get_value("child_1", SafetySettingType.SCREEN_TIME_DAILY) == 90
        assert settings.get_value("child_2", SafetySettingType.SCREEN_TIME_DAILY) == 120

    def test_crisis_allowlist_entries(self):
        settings = SettingsStore()
        assert settings.get_value("child_1", SafetySettingType.CRISIS_ALLOWLIST) == ""
        settings.apply("child_1", SafetySettingType.CRISIS_ALLOWLIST, "988lifeline.org")
        settings.apply("child_1", SafetySettingType.CRISIS_ALLOWLIST, "988lifeline.org")
        assert settings.get_allowlist("child_1") == ["988lifeline.org"]

        settings.restore("child_1", SafetySettingType.CRISIS_ALLOWLIST, "", "988lifeline.org")
        assert settings.snapshot("child_1")["crisis_allowlist"] == []

    def test_restore_original_value(self):
        settings = SettingsStore()
        settings.apply("child_1", SafetySettingType.MONITORING_INTERVAL, 1)
        settings.restore("child_1", SafetySettingType.MONITORING_INTERVAL, 5, 1)
        assert settings.snapshot("child_1")["monitoring_interval"] == 5


class TestGuardianDirectory:
    def test_shared_custody_needs_two_guardians(self):
        directory = InMemoryGuardianDirectory()
        directory.register_child("child_1", ["guardian_a", "guardian_b"])
        directory.register_child("child_2", ["guardian_c"])
        directory.register_child("child_3", ["guardian_d", "guardian_e"], shared_custody=False)

        assert directory.is_shared_custody("child_1")
        assert not directory.is_shared_custody("child_2")
        assert not directory.is_shared_custody("child_3")
        assert directory.is_guardian("child_1", "guardian_b")
        assert not directory.is_guardian("child_1", "guardian_c")
        assert directory.guardians_of("child_1") == ["guardian_a", "guardian_b"]
