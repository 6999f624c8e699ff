"""Alert lifecycle management - Alert Manager."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from opsmon.errors import ErrorCode, InvalidTransitionError, NotFoundError, ValidationError

from .channels import DeliveryReport
from .config import ALLOWED_TRANSITIONS, AlertConfig, AlertLevel, AlertStatus
from .dedup import Deduplicator
from .escalation import EscalationEngine, EscalationReport, EscalationResult
from .models import Alert, utcnow
from .notifier import AlertNotifier
from .oncall import OnCallAssignment, OnCallSchedule
from .routing import RoutingEngine
from .store import AlertStore
from .templates import TemplateStore

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100


@dataclass
class RaiseResult:
    """Outcome of raising an alert."""

    alert: Alert
    created: bool
    delivery: Optional[DeliveryReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "created": self.created,
            "delivery": self.delivery.to_dict() if self.delivery else None,
        }


@dataclass
class AlertGroup:
    """Alerts sharing a component and type within a window."""

    component: str
    alert_type: str
    count: int
    occurrences: int
    highest_level: AlertLevel
    first_seen: datetime
    last_seen: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "type": self.alert_type,
            "count": self.count,
            "occurrences": self.occurrences,
            "highest_level": self.highest_level.value,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }


@dataclass
class AlertStats:
    """Alert counts and lifecycle timings."""

    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_level: Dict[str, int] = field(default_factory=dict)
    by_component: Dict[str, int] = field(default_factory=dict)
    escalated: int = 0
    mean_minutes_to_acknowledge: Optional[float] = None
    mean_minutes_to_resolve: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_status": self.by_status,
            "by_level": self.by_level,
            "by_component": self.by_component,
            "escalated": self.escalated,
            "mean_minutes_to_acknowledge": self.mean_minutes_to_acknowledge,
            "mean_minutes_to_resolve": self.mean_minutes_to_resolve,
        }


def _mean_minutes(spans: List[timedelta]) -> Optional[float]:
    if not spans:
        return None
    return round(sum(s.total_seconds() for s in spans) / len(spans) / 60.0, 2)


def _require_text(value: Optional[str], field_name: str, max_length: Optional[int] = None) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(
            f"{field_name.capitalize()} is required",
            error_code=ErrorCode.MISSING_REQUIRED_FIELD,
            field=field_name,
        )
    if max_length is not None and len(text) > max_length:
        raise ValidationError(
            f"{field_name.capitalize()} exceeds {max_length} characters", field=field_name,
        )
    return text


def _require_positive(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)
    return value


class AlertManager:
    """Central alert lifecycle manager.

    Handles raising (with deduplication), listing, acknowledgement,
    resolution, reporting and cleanup, and delegates escalation and
    on-call lookups. Holds no alert state between calls; every read and
    write goes to the store.
    """

    def __init__(
        self,
        config: AlertConfig,
        store: AlertStore,
        deduplicator: Deduplicator,
        notifier: AlertNotifier,
        escalation: EscalationEngine,
        oncall: OnCallSchedule,
        router: RoutingEngine,
        templates: TemplateStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._dedup = deduplicator
        self._notifier = notifier
        self._escalation = escalation
        self._oncall = oncall
        self._router = router
        self._templates = templates
        self._clock = clock

    @property
    def config(self) -> AlertConfig:
        return self._config

    @property
    def router(self) -> RoutingEngine:
        """Access the routing engine loaded for this invocation."""
        return self._router

    @property
    def templates(self) -> TemplateStore:
        return self._templates

    @property
    def escalation(self) -> EscalationEngine:
        return self._escalation

    # ── Raising ───────────────────────────────────────────────────────

    def raise_alert(
        self,
        component: str,
        level,
        alert_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RaiseResult:
        """Raise an alert.

        Performs deduplication, stores the alert, routes it to
        destinations, and dispatches notifications.

        Args:
            component: Originating subsystem.
            level: Alert level (AlertLevel or its name).
            alert_type: Short classification used for routing.
            message: Human-readable description.
            metadata: Optional key-value details.

        Returns:
            RaiseResult with the stored alert, whether it is new, and the
            delivery report when notifications were sent.
        """
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Metadata must be a JSON object", field="metadata")
        candidate = Alert(
            component=_require_text(component, "component", MAX_NAME_LENGTH),
            level=AlertLevel.parse(level),
            alert_type=_require_text(alert_type, "type", MAX_NAME_LENGTH),
            message=_require_text(message, "message"),
            metadata=dict(metadata or {}),
            created_at=self._clock(),
        )

        outcome = self._dedup.raise_alert(candidate)
        alert = outcome.alert
        if outcome.created:
            logger.info(
                "Alert raised: %s [%s] %s/%s - %s",
                alert.alert_id, alert.level.value, alert.component, alert.alert_type, alert.message,
                extra={"alert_id": alert.alert_id, "component": alert.component},
            )

        delivery = self._notifier.notify(alert) if outcome.notify else None
        return RaiseResult(alert=alert, created=outcome.created, delivery=delivery)

    # ── Queries ───────────────────────────────────────────────────────

    def list_alerts(self, component: Optional[str] = None, status=None) -> List[Alert]:
        """Alerts newest first, optionally filtered by component and status."""
        statuses = [AlertStatus.parse(status)] if status else None
        return self._store.list_alerts(component=component or None, statuses=statuses)

    def show(self, alert_id: str) -> Optional[Alert]:
        """A single alert, or None when no alert has this id."""
        if not alert_id or not alert_id.strip():
            return None
        return self._store.get(alert_id.strip())

    def deliveries(self, alert_id: str) -> List[Dict[str, Any]]:
        return self._store.deliveries(alert_id)

    def aggregate(
        self,
        component: Optional[str] = None,
        window_minutes: int = 60,
        include_resolved: bool = False,
    ) -> List[AlertGroup]:
        """Group recent alerts by component and type."""
        _require_positive(window_minutes, "window_minutes")
        since = self._clock() - timedelta(minutes=window_minutes)
        statuses = None if include_resolved else [AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED]
        rows = self._store.aggregate(since, component=component or None, statuses=statuses)
        return [AlertGroup(**row) for row in rows]

    def history(self, component: str, days: int = 7) -> List[Alert]:
        """All alerts for a component created in the last ``days`` days, newest first."""
        component = _require_text(component, "component")
        _require_positive(days, "days")
        since = self._clock() - timedelta(days=days)
        return self._store.list_alerts(component=component, since=since)

    def stats(self, component: Optional[str] = None) -> AlertStats:
        raw = self._store.stats(component or None)
        ack_spans, resolve_spans = [], []
        for created_at, acknowledged_at, resolved_at in raw["timings"]:
            if acknowledged_at is not None:
                ack_spans.append(acknowledged_at - created_at)
            if resolved_at is not None:
                resolve_spans.append(resolved_at - created_at)
        return AlertStats(
            total=sum(raw["by_status"].values()),
            by_status=raw["by_status"],
            by_level=raw["by_level"],
            by_component=raw["by_component"],
            escalated=raw["escalated"],
            mean_minutes_to_acknowledge=_mean_minutes(ack_spans),
            mean_minutes_to_resolve=_mean_minutes(resolve_spans),
        )

    # ── Transitions ───────────────────────────────────────────────────

    def acknowledge(self, alert_id: str, actor: str) -> Alert:
        """Acknowledge an active alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the alert is not active.
        """
        return self._transition(alert_id, AlertStatus.ACKNOWLEDGED, actor)

    def resolve(self, alert_id: str, actor: str) -> Alert:
        """Resolve an active or acknowledged alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the alert is already resolved.
        """
        return self._transition(alert_id, AlertStatus.RESOLVED, actor)

    def _transition(self, alert_id: str, target: AlertStatus, actor: str) -> Alert:
        alert_id = _require_text(alert_id, "alert id")
        actor = _require_text(actor, "actor", MAX_NAME_LENGTH)
        alert = self._store.get(alert_id)
        if alert is None:
            raise NotFoundError(
                f"Alert {alert_id} not found", resource_type="alert", resource_id=alert_id,
            )

        allowed_from = [s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]
        if alert.status not in allowed_from or not self._store.transition_status(
            alert_id, allowed_from, target, actor
        ):
            current = self._store.get(alert_id)
            current_status = current.status.value if current else alert.status.value
            raise InvalidTransitionError(
                f"Cannot move alert {alert_id} from {current_status} to {target.value}",
                alert_id=alert_id,
                current=current_status,
                requested=target.value,
            )

        logger.info(
            "Alert %s %s by %s", alert_id, target.value, actor,
            extra={"alert_id": alert_id, "component": alert.component},
        )
        return self._store.get(alert_id)

    # ── Maintenance ───────────────────────────────────────────────────

    def cleanup(self, retention_days: int) -> int:
        """Delete resolved alerts older than the retention window.

        ``retention_days <= 0`` deletes every resolved alert.
        """
        if isinstance(retention_days, bool) or not isinstance(retention_days, int):
            raise ValidationError("retention_days must be an integer", field="days")
        before = None
        if retention_days > 0:
            before = self._clock() - timedelta(days=retention_days)
        deleted = self._store.delete_resolved(before)
        logger.info("Cleaned up %d resolved alert(s)", deleted)
        return deleted

    # ── Delegates ─────────────────────────────────────────────────────

    def escalate(self, alert_id: str, level: int, actor: str = "manual") -> EscalationResult:
        return self._escalation.escalate(alert_id, level, actor)

    def check_escalation(self, component: Optional[str] = None) -> EscalationReport:
        return self._escalation.check_escalation(component)

    def on_call(self, on_date: Optional[date] = None) -> OnCallAssignment:
        return self._oncall.on_call(on_date)

    def rotate_on_call(self, actor: str = "system") -> Optional[OnCallAssignment]:
        return self._oncall.rotate(actor)
