"""Alert lifecycle management - Deduplication.

At most one active alert exists per fingerprint (component, type,
message). A raise that matches an active alert is absorbed by it: its
occurrence count goes up and no new row or notification is produced.
"""

import logging
from dataclasses import dataclass

from .models import Alert
from .store import AlertStore

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    """Outcome of submitting a candidate alert."""

    alert: Alert
    created: bool
    notify: bool


class Deduplicator:
    """Collapses repeated raises onto the active alert with the same fingerprint.

    Args:
        store: Alert store used for lookups and the atomic insert.
        renotify_on_duplicate: Notify again when a duplicate is absorbed.
    """

    def __init__(self, store: AlertStore, renotify_on_duplicate: bool = False) -> None:
        self._store = store
        self._renotify = renotify_on_duplicate

    def raise_alert(self, candidate: Alert) -> DedupResult:
        """Persist ``candidate`` or fold it into the matching active alert.

        Args:
            candidate: A fully populated, not yet stored alert.

        Returns:
            DedupResult with the stored alert and whether it was created.
        """
        existing = self._store.get_active_by_fingerprint(candidate.fingerprint)
        if existing is None:
            stored, created = self._store.insert_if_absent(candidate)
            if created:
                return DedupResult(alert=stored, created=True, notify=True)
            existing = stored

        if self._store.increment_occurrence(existing.alert_id):
            existing.occurrence_count += 1
        else:
            logger.info(
                "Alert %s left the active state while absorbing a duplicate",
                existing.alert_id,
                extra={"alert_id": existing.alert_id},
            )
        logger.info(
            "Deduplicated alert %s (%s/%s, count=%d)",
            existing.alert_id, existing.component, existing.alert_type,
            existing.occurrence_count,
            extra={"alert_id": existing.alert_id, "component": existing.component},
        )
        return DedupResult(alert=existing, created=False, notify=self._renotify)
