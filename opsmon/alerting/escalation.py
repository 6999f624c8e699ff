"""Alert lifecycle management - Escalation Management."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from opsmon.errors import AlertingError, ErrorCode, InvalidTransitionError, NotFoundError

from .channels import DeliveryReport
from .config import AlertStatus, EscalationPolicy
from .models import Alert, utcnow
from .notifier import AlertNotifier
from .store import AlertStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "escalation_history"


@dataclass
class EscalationResult:
    """A single successful escalation."""

    alert: Alert
    from_level: int
    to_level: int
    delivery: DeliveryReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert.alert_id,
            "from_level": self.from_level,
            "to_level": self.to_level,
            "delivery": self.delivery.to_dict(),
        }


@dataclass
class EscalationReport:
    """Summary of one escalation sweep."""

    checked: int = 0
    escalated: List[Tuple[str, int]] = field(default_factory=list)
    skipped: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "escalated": [{"alert_id": a, "level": lvl} for a, lvl in self.escalated],
            "skipped": self.skipped,
            "failures": [{"alert_id": a, "error": err} for a, err in self.failures],
        }


class EscalationEngine:
    """Raises the escalation level of active alerts as they age.

    Every level change is a conditional write on the level that was read,
    so two overlapping sweeps escalate an alert at most once per level.
    """

    def __init__(
        self,
        store: AlertStore,
        notifier: AlertNotifier,
        policy: EscalationPolicy,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._policy = policy
        self._clock = clock

    @property
    def policy(self) -> EscalationPolicy:
        return self._policy

    def eligible_level(self, alert: Alert, now: Optional[datetime] = None) -> int:
        """Highest level the alert qualifies for by age, or 0."""
        if alert.status != AlertStatus.ACTIVE:
            return 0
        if not self._policy.is_eligible_severity(alert.level):
            return 0
        return self._policy.level_for_age(alert.age(now or self._clock()))

    def needs_escalation(self, alert: Alert, now: Optional[datetime] = None) -> bool:
        return self.eligible_level(alert, now) > alert.escalation_level

    def escalate(self, alert_id: str, target_level: int, actor: str = "manual") -> EscalationResult:
        """Escalate one alert to ``target_level`` and notify.

        Args:
            alert_id: The alert to escalate.
            target_level: New escalation level, above the current one.
            actor: Who requested the escalation.

        Returns:
            EscalationResult with the updated alert and delivery report.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the alert is not active, its severity
                never escalates, or the level is not above current or is
                beyond the maximum.
        """
        alert = self._store.get(alert_id)
        if alert is None:
            raise NotFoundError(
                f"Alert {alert_id} not found", resource_type="alert", resource_id=alert_id,
            )
        if alert.status != AlertStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Alert {alert_id} is {alert.status.value}; only active alerts escalate",
                error_code=ErrorCode.INVALID_ESCALATION,
                alert_id=alert_id,
                current=alert.status.value,
            )
        if not self._policy.is_eligible_severity(alert.level):
            raise InvalidTransitionError(
                f"Alert {alert_id} has level {alert.level.value}; alerts below "
                f"{self._policy.min_severity.value} do not escalate",
                error_code=ErrorCode.INVALID_ESCALATION,
                alert_id=alert_id,
                current=alert.escalation_level,
                requested=target_level,
            )
        return self._apply(alert, target_level, actor)

    def _apply(self, alert: Alert, target_level: int, actor: str) -> EscalationResult:
        current = alert.escalation_level
        if target_level <= current or target_level > self._policy.max_level:
            raise InvalidTransitionError(
                f"Cannot escalate alert {alert.alert_id} from level {current} to "
                f"{target_level} (max {self._policy.max_level})",
                error_code=ErrorCode.INVALID_ESCALATION,
                alert_id=alert.alert_id,
                current=current,
                requested=target_level,
            )

        now = self._clock()
        metadata = dict(alert.metadata)
        existing = metadata.get(HISTORY_KEY)
        if not isinstance(existing, list):
            if existing is not None:
                logger.warning(
                    "Replacing non-list %s on alert %s", HISTORY_KEY, alert.alert_id,
                    extra={"alert_id": alert.alert_id},
                )
            existing = []
        history = list(existing)
        history.append({
            "level": target_level,
            "from_level": current,
            "at": now.isoformat(),
            "by": actor,
        })
        metadata[HISTORY_KEY] = history

        if not self._store.update_escalation(alert.alert_id, current, target_level, metadata):
            raise InvalidTransitionError(
                f"Alert {alert.alert_id} changed while escalating; escalation not applied",
                error_code=ErrorCode.INVALID_ESCALATION,
                alert_id=alert.alert_id,
                current=current,
                requested=target_level,
            )

        alert.escalation_level = target_level
        alert.metadata = metadata
        alert.updated_at = now
        logger.info(
            "Alert %s escalated from level %d to %d by %s",
            alert.alert_id, current, target_level, actor,
            extra={"alert_id": alert.alert_id, "component": alert.component},
        )
        delivery = self._notifier.notify(alert)
        return EscalationResult(alert=alert, from_level=current, to_level=target_level, delivery=delivery)

    def check_escalation(self, component: Optional[str] = None) -> EscalationReport:
        """Escalate every active alert that has aged past its next threshold.

        Each alert moves straight to the highest level it qualifies for.
        Per-alert errors are collected in the report; only a failure to
        list alerts propagates.
        """
        report = EscalationReport()
        if not self._policy.enabled:
            logger.info("Escalation is disabled, skipping check")
            return report

        now = self._clock()
        alerts = self._store.list_alerts(
            component=component, statuses=[AlertStatus.ACTIVE], oldest_first=True,
        )
        for alert in alerts:
            report.checked += 1
            target = self.eligible_level(alert, now)
            if target <= alert.escalation_level:
                report.skipped += 1
                continue
            try:
                self._apply(alert, target, actor="escalation-check")
            except InvalidTransitionError as exc:
                # A concurrent sweep or operator got there first.
                report.skipped += 1
                logger.info("Skipped escalation of %s: %s", alert.alert_id, exc.message)
            except AlertingError as exc:
                report.failures.append((alert.alert_id, exc.message))
                logger.error(
                    "Escalation of %s failed: %s", alert.alert_id, exc.message,
                    extra={"alert_id": alert.alert_id},
                )
            except Exception as exc:
                report.failures.append((alert.alert_id, f"{type(exc).__name__}: {exc}"))
                logger.exception(
                    "Unexpected error escalating %s", alert.alert_id,
                    extra={"alert_id": alert.alert_id},
                )
            else:
                report.escalated.append((alert.alert_id, target))

        logger.info(
            "Escalation check: %d checked, %d escalated, %d skipped, %d failed",
            report.checked, len(report.escalated), report.skipped, len(report.failures),
        )
        return report
