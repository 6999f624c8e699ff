"""Alert lifecycle management - On-call rotation."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional

from opsmon.errors import ValidationError

from .config import OnCallConfig, OnCallMember
from .models import utcnow
from .store import AlertStore

logger = logging.getLogger(__name__)

ROTATION_NAME = "primary"


@dataclass
class OnCallAssignment:
    """Who is on call on a given date."""

    on_date: date
    member: Optional[OnCallMember]
    rotation_offset: int = 0
    period_start: Optional[date] = None
    period_end: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.on_date.isoformat(),
            "on_call": self.member.name if self.member else None,
            "contact": self.member.contact if self.member else None,
            "rotation_offset": self.rotation_offset,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
        }


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD date, raising ValidationError otherwise."""
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid date '{value}' (expected YYYY-MM-DD)", field="date") from None


class OnCallSchedule:
    """Fixed-period rotation over the configured members.

    The member on call for a date is
    ``members[(offset + (date - anchor).days // period_days) % len(members)]``,
    where ``offset`` is persisted and only moves on an explicit rotate.
    """

    def __init__(
        self,
        config: OnCallConfig,
        store: AlertStore,
        clock: Callable[[], datetime] = utcnow,
        name: str = ROTATION_NAME,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock
        self._name = name

    @property
    def configured(self) -> bool:
        return bool(self._config.members)

    def on_call(self, on_date: Optional[date] = None) -> OnCallAssignment:
        """Assignment for ``on_date`` (today, UTC, when omitted)."""
        on_date = on_date or self._clock().date()
        members = self._config.members
        if not members:
            return OnCallAssignment(on_date=on_date, member=None)

        offset = self._store.get_rotation_offset(self._name)
        period = self._config.period_days
        period_index = (on_date - self._config.anchor).days // period
        period_start = self._config.anchor + timedelta(days=period_index * period)
        member = members[(offset + period_index) % len(members)]
        return OnCallAssignment(
            on_date=on_date,
            member=member,
            rotation_offset=offset,
            period_start=period_start,
            period_end=period_start + timedelta(days=period - 1),
        )

    def rotate(self, actor: str = "system") -> Optional[OnCallAssignment]:
        """Hand on-call to the next member. No-op when rotation is off or empty."""
        if not self._config.enabled:
            logger.info("On-call rotation is disabled, nothing to rotate")
            return None
        if not self._config.members:
            logger.info("No on-call members configured, nothing to rotate")
            return None

        before = self.on_call()
        offset = self._store.advance_rotation(self._name, actor)
        after = self.on_call()
        logger.info(
            "Rotated on-call from %s to %s (offset=%d, by %s)",
            before.member.name, after.member.name, offset, actor,
        )
        return after
