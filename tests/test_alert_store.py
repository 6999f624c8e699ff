"""Tests for the SQLAlchemy alert store and deduplication."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from opsmon.alerting.channels import DeliveryResult
from opsmon.alerting.config import AlertLevel, AlertStatus, ChannelType, DeliveryOutcome
from opsmon.alerting.dedup import Deduplicator
from opsmon.alerting.models import Alert
from opsmon.alerting.store import AlertStore
from opsmon.db import get_session_factory
from opsmon.errors import StoreError


def _alert(clock, **overrides):
    values = dict(
        component="INGESTION",
        level=AlertLevel.CRITICAL,
        alert_type="data_quality",
        message="gap detected",
        created_at=clock(),
    )
    values.update(overrides)
    return Alert(**values)


@pytest.fixture
def store(session_factory, clock):
    return AlertStore(session_factory, clock=clock)


class TestInsertIfAbsent:
    def test_first_insert_creates(self, store, clock):
        alert = _alert(clock, metadata={"rows": 3})
        stored, created = store.insert_if_absent(alert)
        assert created
        fetched = store.get(alert.alert_id)
        assert fetched.component == "INGESTION"
        assert fetched.level == AlertLevel.CRITICAL
        assert fetched.status == AlertStatus.ACTIVE
        assert fetched.metadata == {"rows": 3}
        assert fetched.created_at == clock()

    def test_second_insert_returns_existing(self, store, clock):
        first, _ = store.insert_if_absent(_alert(clock))
        stored, created = store.insert_if_absent(_alert(clock))
        assert not created
        assert stored.alert_id == first.alert_id
        assert len(store.list_alerts()) == 1

    def test_level_is_not_part_of_identity(self, store, clock):
        store.insert_if_absent(_alert(clock, level=AlertLevel.WARNING))
        _, created = store.insert_if_absent(_alert(clock, level=AlertLevel.CRITICAL))
        assert not created

    def test_different_message_is_new_alert(self, store, clock):
        store.insert_if_absent(_alert(clock))
        _, created = store.insert_if_absent(_alert(clock, message="gap detected again"))
        assert created

    def test_resolved_alert_does_not_block_new_one(self, store, clock):
        first, _ = store.insert_if_absent(_alert(clock))
        assert store.transition_status(
            first.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "alice",
        )
        second, created = store.insert_if_absent(_alert(clock))
        assert created
        assert second.alert_id != first.alert_id

    def test_get_unknown(self, store):
        assert store.get("no-such-id") is None


class TestConditionalWrites:
    def test_increment_occurrence(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        clock.advance(minutes=1)
        assert store.increment_occurrence(alert.alert_id)
        fetched = store.get(alert.alert_id)
        assert fetched.occurrence_count == 2
        assert fetched.updated_at == clock()

    def test_increment_ignores_resolved(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        store.transition_status(alert.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "bob")
        assert not store.increment_occurrence(alert.alert_id)

    def test_acknowledge_sets_actor_and_time(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        clock.advance(minutes=3)
        assert store.transition_status(
            alert.alert_id, [AlertStatus.ACTIVE], AlertStatus.ACKNOWLEDGED, "alice",
        )
        fetched = store.get(alert.alert_id)
        assert fetched.status == AlertStatus.ACKNOWLEDGED
        assert fetched.acknowledged_by == "alice"
        assert fetched.acknowledged_at == clock()
        assert fetched.resolved_at is None

    def test_transition_from_wrong_status_is_rejected(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        store.transition_status(alert.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "alice")
        assert not store.transition_status(
            alert.alert_id, [AlertStatus.ACTIVE], AlertStatus.ACKNOWLEDGED, "bob",
        )
        assert store.get(alert.alert_id).status == AlertStatus.RESOLVED

    def test_update_escalation_requires_expected_level(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        assert store.update_escalation(alert.alert_id, 0, 1, {"escalation_history": [1]})
        assert not store.update_escalation(alert.alert_id, 0, 2, {})
        fetched = store.get(alert.alert_id)
        assert fetched.escalation_level == 1
        assert fetched.metadata == {"escalation_history": [1]}

    def test_update_escalation_requires_active(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        store.transition_status(
            alert.alert_id, [AlertStatus.ACTIVE], AlertStatus.ACKNOWLEDGED, "alice",
        )
        assert not store.update_escalation(alert.alert_id, 0, 1, {})


class TestQueries:
    def test_list_filters_and_order(self, store, clock):
        older, _ = store.insert_if_absent(_alert(clock))
        clock.advance(minutes=5)
        newer, _ = store.insert_if_absent(_alert(clock, message="other"))
        clock.advance(minutes=5)
        store.insert_if_absent(_alert(clock, component="ANALYTICS"))
        store.transition_status(older.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "x")

        ingestion = store.list_alerts(component="INGESTION")
        assert [a.alert_id for a in ingestion] == [newer.alert_id, older.alert_id]
        active = store.list_alerts(component="INGESTION", statuses=[AlertStatus.ACTIVE])
        assert [a.alert_id for a in active] == [newer.alert_id]
        oldest = store.list_alerts(oldest_first=True, limit=1)
        assert oldest[0].alert_id == older.alert_id
        recent = store.list_alerts(since=clock() - timedelta(minutes=6))
        assert len(recent) == 2

    def test_aggregate_groups_by_component_and_type(self, store, clock):
        store.insert_if_absent(_alert(clock, level=AlertLevel.WARNING, message="a"))
        store.insert_if_absent(_alert(clock, level=AlertLevel.CRITICAL, message="b"))
        store.insert_if_absent(_alert(clock, component="ANALYTICS", level=AlertLevel.INFO))
        groups = store.aggregate(clock() - timedelta(hours=1))
        assert groups[0]["component"] == "INGESTION"
        assert groups[0]["count"] == 2
        assert groups[0]["highest_level"] == AlertLevel.CRITICAL
        assert groups[1]["highest_level"] == AlertLevel.INFO

    def test_aggregate_window(self, store, clock):
        store.insert_if_absent(_alert(clock))
        clock.advance(hours=2)
        assert store.aggregate(clock() - timedelta(hours=1)) == []

    def test_stats(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        store.insert_if_absent(_alert(clock, message="other", level=AlertLevel.INFO))
        store.update_escalation(alert.alert_id, 0, 1, {})
        clock.advance(minutes=10)
        store.transition_status(alert.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "x")
        stats = store.stats()
        assert stats["by_status"] == {"active": 1, "resolved": 1}
        assert stats["by_level"] == {"critical": 1, "info": 1}
        assert stats["escalated"] == 1
        assert stats["timings"] == [(datetime(2026, 3, 2, 9, 0), None, datetime(2026, 3, 2, 9, 10))]


class TestDeliveriesAndCleanup:
    def test_record_and_read_deliveries(self, store, clock):
        alert, _ = store.insert_if_absent(_alert(clock))
        results = [
            DeliveryResult(ChannelType.MAIL, "ops@example.com", DeliveryOutcome.DELIVERED, attempted_at=clock()),
            DeliveryResult(ChannelType.CHAT, "webhook", DeliveryOutcome.FAILED, "HTTPStatusError", clock()),
        ]
        assert store.record_deliveries(alert.alert_id, results, escalation_level=1) == 2
        rows = store.deliveries(alert.alert_id)
        assert [r["outcome"] for r in rows] == ["delivered", "failed"]
        assert rows[1]["error"] == "HTTPStatusError"
        assert rows[0]["escalation_level"] == 1

    def test_record_nothing(self, store):
        assert store.record_deliveries("any", []) == 0

    def test_delete_resolved_respects_cutoff(self, store, clock):
        old, _ = store.insert_if_absent(_alert(clock, message="old"))
        store.transition_status(old.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "x")
        store.record_deliveries(old.alert_id, [
            DeliveryResult(ChannelType.MAIL, "ops@example.com", DeliveryOutcome.DELIVERED),
        ])
        clock.advance(days=10)
        recent, _ = store.insert_if_absent(_alert(clock, message="recent"))
        store.transition_status(recent.alert_id, [AlertStatus.ACTIVE], AlertStatus.RESOLVED, "x")
        active, _ = store.insert_if_absent(_alert(clock, message="active"))

        assert store.delete_resolved(clock() - timedelta(days=7)) == 1
        assert store.get(old.alert_id) is None
        assert store.deliveries(old.alert_id) == []
        assert store.get(recent.alert_id) is not None

        assert store.delete_resolved(None) == 1
        assert [a.alert_id for a in store.list_alerts()] == [active.alert_id]


class TestRotation:
    def test_offset_starts_at_zero_and_advances(self, store):
        assert store.get_rotation_offset("primary") == 0
        assert store.advance_rotation("primary", "alice") == 1
        assert store.advance_rotation("primary", "bob") == 2
        assert store.get_rotation_offset("primary") == 2
        assert store.get_rotation_offset("secondary") == 0


class TestStoreErrors:
    def test_missing_schema_raises_store_error(self, clock):
        bare = create_engine("sqlite://", poolclass=StaticPool)
        store = AlertStore(get_session_factory(bare), clock=clock)
        with pytest.raises(StoreError) as exc_info:
            store.list_alerts()
        assert exc_info.value.exit_code == 3
        with pytest.raises(StoreError):
            store.insert_if_absent(_alert(clock))
        bare.dispose()


class TestDeduplicator:
    def test_new_alert_notifies(self, store, clock):
        result = Deduplicator(store).raise_alert(_alert(clock))
        assert result.created and result.notify

    def test_duplicate_absorbed_without_notification(self, store, clock):
        dedup = Deduplicator(store)
        first = dedup.raise_alert(_alert(clock))
        second = dedup.raise_alert(_alert(clock))
        assert not second.created
        assert not second.notify
        assert second.alert.alert_id == first.alert.alert_id
        assert second.alert.occurrence_count == 2
        assert store.get(first.alert.alert_id).occurrence_count == 2

    def test_renotify_on_duplicate(self, store, clock):
        dedup = Deduplicator(store, renotify_on_duplicate=True)
        dedup.raise_alert(_alert(clock))
        assert dedup.raise_alert(_alert(clock)).notify

    def test_lost_insert_race_is_duplicate(self, store, clock, monkeypatch):
        dedup = Deduplicator(store)
        winner = dedup.raise_alert(_alert(clock))
        # The loser's lookup ran before the winner committed.
        calls = []
        real_lookup = store.get_active_by_fingerprint

        def stale_first_lookup(fingerprint):
            calls.append(fingerprint)
            return None if len(calls) == 1 else real_lookup(fingerprint)

        monkeypatch.setattr(store, "get_active_by_fingerprint", stale_first_lookup)
        loser = dedup.raise_alert(_alert(clock))
        assert not loser.created
        assert loser.alert.alert_id == winner.alert.alert_id
        assert len(store.list_alerts(statuses=[AlertStatus.ACTIVE])) == 1
