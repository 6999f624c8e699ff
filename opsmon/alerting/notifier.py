"""Alert lifecycle management - Notification pipeline.

Routes, renders and dispatches one alert, then records the outcome of
every attempt. Used for new alerts and for escalations.
"""

import logging
from typing import List, Optional

from opsmon.errors import ConfigError, StoreError

from .channels import ChannelDispatcher, DeliveryReport
from .config import AlertConfig
from .formatter import NotificationFormatter
from .models import Alert
from .oncall import OnCallSchedule
from .routing import Destination, RoutingEngine, parse_destination, parse_destinations
from .store import AlertStore

logger = logging.getLogger(__name__)


class AlertNotifier:
    """Delivers notifications for alerts.

    Destinations come from the winning routing rule, or the configured
    defaults when no rule matches. Escalated alerts also reach the
    per-level escalation destinations and the on-call member.
    """

    def __init__(
        self,
        config: AlertConfig,
        store: AlertStore,
        router: RoutingEngine,
        formatter: NotificationFormatter,
        dispatcher: ChannelDispatcher,
        oncall: Optional[OnCallSchedule] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._router = router
        self._formatter = formatter
        self._dispatcher = dispatcher
        self._oncall = oncall

    def destinations_for(self, alert: Alert) -> List[Destination]:
        destinations = self._router.resolve(alert.component, alert.level.value, alert.alert_type)
        if not destinations:
            destinations = parse_destinations(self._config.default_destinations)

        level = alert.escalation_level
        policy = self._config.escalation
        if level > 0:
            destinations += parse_destinations(policy.destinations_through(level))
            if self._oncall is not None and level >= policy.oncall_from_level:
                contact = self._oncall_contact()
                if contact is not None:
                    destinations.append(contact)

        unique: List[Destination] = []
        for destination in destinations:
            if destination not in unique:
                unique.append(destination)
        return unique

    def _oncall_contact(self) -> Optional[Destination]:
        assignment = self._oncall.on_call()
        if assignment.member is None or not assignment.member.contact:
            return None
        try:
            return parse_destination(assignment.member.contact)
        except ConfigError as exc:
            logger.warning(
                "On-call contact for %s is not a valid destination: %s",
                assignment.member.name, exc.message,
            )
            return None

    def notify(self, alert: Alert) -> DeliveryReport:
        """Deliver ``alert`` to all of its destinations."""
        destinations = self.destinations_for(alert)
        if not destinations:
            logger.info(
                "No destinations for alert %s (%s/%s), not notifying",
                alert.alert_id, alert.component, alert.alert_type,
                extra={"alert_id": alert.alert_id, "component": alert.component},
            )
            return DeliveryReport(alert_id=alert.alert_id)

        payload = self._formatter.build_payload(alert, self._config.mail.style)
        report = self._dispatcher.dispatch_all(alert.alert_id, payload, destinations)
        try:
            self._store.record_deliveries(alert.alert_id, report.results, alert.escalation_level)
        except StoreError as exc:
            report.recorded = False
            logger.error(
                "Could not record deliveries for alert %s: %s", alert.alert_id, exc.message,
                extra={"alert_id": alert.alert_id},
            )
        return report
