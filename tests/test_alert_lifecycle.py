"""End-to-end tests for the alert manager against SQLite."""

import pytest

from opsmon.alerting.config import AlertLevel, AlertStatus
from opsmon.alerting.store import AlertStore
from opsmon.errors import (
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)


class TestRaise:
    def test_raise_twice_yields_one_active_alert(self, make_manager, mail_transport, chat_transport):
        manager = make_manager()
        first = manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected")
        second = manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected")

        assert first.created
        assert not second.created
        assert second.alert.alert_id == first.alert.alert_id
        assert second.delivery is None

        active = manager.list_alerts(component="INGESTION", status="active")
        assert [a.alert_id for a in active] == [first.alert.alert_id]
        assert active[0].occurrence_count == 2
        # Only the first raise notified.
        assert len(mail_transport.sent) == 1
        assert len(chat_transport.posts) == 1

    def test_raise_notifies_routed_destinations(self, make_manager, mail_transport, chat_transport):
        manager = make_manager(rules="INGESTION:critical:*:data@example.com\n*:*:*:chat\n")
        result = manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected")
        assert result.delivery.delivered == 1
        assert mail_transport.sent[0]["to"] == "data@example.com"
        assert mail_transport.sent[0]["subject"] == "[CRITICAL] INGESTION: data_quality"
        assert chat_transport.posts == []

        manager.raise_alert("ANALYTICS", "warning", "lag", "slow")
        assert len(chat_transport.posts) == 1

    def test_no_rule_uses_default_destinations(self, make_manager, mail_transport):
        manager = make_manager(rules="", default_destinations=("fallback@example.com",))
        manager.raise_alert("INGESTION", "info", "heartbeat", "late")
        assert [m["to"] for m in mail_transport.sent] == ["fallback@example.com"]

    def test_no_destinations_at_all(self, make_manager, mail_transport):
        manager = make_manager(rules="")
        result = manager.raise_alert("INGESTION", "info", "heartbeat", "late")
        assert result.created
        assert result.delivery.results == []
        assert mail_transport.sent == []

    def test_failed_delivery_is_recorded_not_raised(self, make_manager, mail_transport):
        mail_transport.error = ConnectionRefusedError("smtp down")
        manager = make_manager()
        result = manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected")
        assert result.delivery.failed == 1
        assert result.delivery.delivered == 1
        outcomes = [d["outcome"] for d in manager.deliveries(result.alert.alert_id)]
        assert outcomes == ["failed", "delivered"]

    def test_renotify_on_duplicate(self, make_manager, mail_transport):
        manager = make_manager(renotify_on_duplicate=True)
        manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected")
        second = manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected")
        assert not second.created
        assert second.delivery is not None
        assert len(mail_transport.sent) == 2

    def test_metadata_is_stored(self, make_manager):
        manager = make_manager()
        result = manager.raise_alert(
            "INGESTION", AlertLevel.WARNING, "data_quality", "gap", {"table_name": "events"},
        )
        assert manager.show(result.alert.alert_id).metadata == {"table_name": "events"}

    @pytest.mark.parametrize("args", [
        ("", "critical", "t", "m"),
        ("C", "critical", "", "m"),
        ("C", "critical", "t", "   "),
        ("C" * 101, "critical", "t", "m"),
    ])
    def test_invalid_fields(self, make_manager, args):
        with pytest.raises(ValidationError):
            make_manager().raise_alert(*args)

    def test_invalid_level(self, make_manager):
        with pytest.raises(ValidationError) as exc_info:
            make_manager().raise_alert("C", "urgent", "t", "m")
        assert exc_info.value.error_code == ErrorCode.INVALID_LEVEL

    def test_metadata_must_be_object(self, make_manager):
        with pytest.raises(ValidationError):
            make_manager().raise_alert("C", "info", "t", "m", ["not", "a", "dict"])

    def test_store_failure_propagates(self, make_manager, monkeypatch):
        manager = make_manager()

        def broken(self, fingerprint):
            raise StoreError("Alert store fingerprint lookup failed")

        monkeypatch.setattr(AlertStore, "get_active_by_fingerprint", broken)
        with pytest.raises(StoreError):
            manager.raise_alert("C", "info", "t", "m")


class TestTransitions:
    def test_acknowledge_then_resolve(self, make_manager, clock):
        manager = make_manager()
        alert = manager.raise_alert("INGESTION", "critical", "data_quality", "gap detected").alert

        clock.advance(minutes=2)
        acked = manager.acknowledge(alert.alert_id, "alice")
        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.acknowledged_at is not None
        assert acked.acknowledged_by == "alice"

        with pytest.raises(InvalidTransitionError) as exc_info:
            manager.acknowledge(alert.alert_id, "alice")
        assert exc_info.value.details["current"] == "acknowledged"

        clock.advance(minutes=3)
        resolved = manager.resolve(alert.alert_id, "alice")
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_by == "alice"
        assert resolved.acknowledged_by == "alice"

    def test_resolve_directly_from_active(self, make_manager):
        manager = make_manager()
        alert = manager.raise_alert("C", "warning", "t", "m").alert
        assert manager.resolve(alert.alert_id, "bob").status == AlertStatus.RESOLVED

    def test_resolved_is_terminal(self, make_manager):
        manager = make_manager()
        alert = manager.raise_alert("C", "warning", "t", "m").alert
        manager.resolve(alert.alert_id, "bob")
        with pytest.raises(InvalidTransitionError):
            manager.resolve(alert.alert_id, "bob")
        with pytest.raises(InvalidTransitionError):
            manager.acknowledge(alert.alert_id, "bob")

    def test_unknown_alert(self, make_manager):
        with pytest.raises(NotFoundError):
            make_manager().acknowledge("no-such-id", "alice")

    def test_actor_required(self, make_manager):
        manager = make_manager()
        alert = manager.raise_alert("C", "warning", "t", "m").alert
        with pytest.raises(ValidationError):
            manager.acknowledge(alert.alert_id, "  ")

    def test_raise_after_resolve_creates_new_alert(self, make_manager):
        manager = make_manager()
        first = manager.raise_alert("C", "warning", "t", "m").alert
        manager.resolve(first.alert_id, "bob")
        second = manager.raise_alert("C", "warning", "t", "m")
        assert second.created
        assert second.alert.alert_id != first.alert_id


class TestQueries:
    def test_list_filters(self, make_manager, clock):
        manager = make_manager()
        a = manager.raise_alert("INGESTION", "critical", "t", "one").alert
        clock.advance(minutes=1)
        b = manager.raise_alert("INGESTION", "warning", "t", "two").alert
        manager.raise_alert("ANALYTICS", "info", "t", "three")
        manager.acknowledge(a.alert_id, "alice")

        assert [x.alert_id for x in manager.list_alerts(component="INGESTION")] == [b.alert_id, a.alert_id]
        assert [x.alert_id for x in manager.list_alerts(status="acknowledged")] == [a.alert_id]
        assert len(manager.list_alerts()) == 3
        with pytest.raises(ValidationError):
            manager.list_alerts(status="snoozed")

    def test_show_unknown_is_none(self, make_manager):
        manager = make_manager()
        assert manager.show("no-such-id") is None
        assert manager.show("  ") is None

    def test_aggregate(self, make_manager, clock):
        manager = make_manager()
        manager.raise_alert("INGESTION", "warning", "data_quality", "a")
        manager.raise_alert("INGESTION", "critical", "data_quality", "b")
        manager.raise_alert("INGESTION", "critical", "data_quality", "b")
        resolved = manager.raise_alert("ANALYTICS", "info", "lag", "c").alert
        manager.resolve(resolved.alert_id, "x")

        groups = manager.aggregate(window_minutes=60)
        assert len(groups) == 1
        group = groups[0]
        assert (group.component, group.alert_type, group.count) == ("INGESTION", "data_quality", 2)
        assert group.occurrences == 3
        assert group.highest_level == AlertLevel.CRITICAL
        assert group.to_dict()["type"] == "data_quality"

        assert len(manager.aggregate(include_resolved=True)) == 2
        clock.advance(hours=2)
        assert manager.aggregate(window_minutes=60) == []

    def test_aggregate_window_must_be_positive(self, make_manager):
        with pytest.raises(ValidationError):
            make_manager().aggregate(window_minutes=0)

    def test_history(self, make_manager, clock):
        manager = make_manager()
        old = manager.raise_alert("INGESTION", "info", "t", "old").alert
        clock.advance(days=10)
        recent = manager.raise_alert("INGESTION", "info", "t", "recent").alert
        manager.raise_alert("ANALYTICS", "info", "t", "other")

        assert [a.alert_id for a in manager.history("INGESTION", 7)] == [recent.alert_id]
        assert [a.alert_id for a in manager.history("INGESTION", 30)] == [recent.alert_id, old.alert_id]
        with pytest.raises(ValidationError):
            manager.history("", 7)
        with pytest.raises(ValidationError):
            manager.history("INGESTION", 0)

    def test_stats(self, make_manager, clock):
        manager = make_manager()
        a = manager.raise_alert("INGESTION", "critical", "t", "one").alert
        manager.raise_alert("ANALYTICS", "info", "t", "two")
        clock.advance(minutes=4)
        manager.acknowledge(a.alert_id, "alice")
        clock.advance(minutes=6)
        manager.resolve(a.alert_id, "alice")

        stats = manager.stats()
        assert stats.total == 2
        assert stats.by_status == {"active": 1, "resolved": 1}
        assert stats.by_component == {"ANALYTICS": 1, "INGESTION": 1}
        assert stats.mean_minutes_to_acknowledge == 4.0
        assert stats.mean_minutes_to_resolve == 10.0
        assert manager.stats(component="ANALYTICS").total == 1


class TestCleanup:
    def test_cleanup_retention(self, make_manager, clock):
        manager = make_manager()
        old = manager.raise_alert("C", "info", "t", "old").alert
        manager.resolve(old.alert_id, "x")
        clock.advance(days=40)
        recent = manager.raise_alert("C", "info", "t", "recent").alert
        manager.resolve(recent.alert_id, "x")
        active = manager.raise_alert("C", "info", "t", "active").alert

        assert manager.cleanup(30) == 1
        assert manager.show(old.alert_id) is None
        assert manager.show(recent.alert_id) is not None
        assert manager.cleanup(0) == 1
        assert [a.alert_id for a in manager.list_alerts()] == [active.alert_id]

    def test_cleanup_zero_keeps_open_alerts(self, make_manager, clock):
        manager = make_manager()
        resolved = manager.raise_alert("C", "warning", "disk", "full").alert
        manager.resolve(resolved.alert_id, "x")
        acked = manager.raise_alert("C", "warning", "lag", "slow").alert
        manager.acknowledge(acked.alert_id, "alice")
        active = manager.raise_alert("C", "critical", "gap", "missing rows").alert

        assert manager.cleanup(0) == 1
        assert manager.show(resolved.alert_id) is None
        assert manager.show(acked.alert_id).status == AlertStatus.ACKNOWLEDGED
        assert manager.show(active.alert_id).status == AlertStatus.ACTIVE

    def test_cleanup_requires_integer(self, make_manager):
        with pytest.raises(ValidationError):
            make_manager().cleanup("30")


class TestRoutingFileDegradation:
    def test_unreadable_rules_fall_back_to_defaults(self, make_manager, tmp_path, mail_transport):
        rules_file = tmp_path / "broken.conf"
        rules_file.write_bytes(b"\xff\xfe")
        manager = make_manager(
            rules_file=str(rules_file), default_destinations=("fallback@example.com",),
        )
        assert manager.router.get_rules() == []
        manager.raise_alert("C", "info", "t", "m")
        assert [m["to"] for m in mail_transport.sent] == ["fallback@example.com"]
