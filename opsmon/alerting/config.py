"""Alert lifecycle management - Configuration.

Enumerations shared by every alerting component, plus the immutable
configuration value built once per invocation from settings and passed
explicitly into each component at construction.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from opsmon.errors import ConfigError, ErrorCode, ValidationError

logger = logging.getLogger(__name__)


class AlertLevel(Enum):
    """Alert severity levels, fixed at creation."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def parse(cls, value) -> "AlertLevel":
        """Parse a level name, raising ValidationError for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid alert level '{value}' (expected one of: "
                f"{', '.join(l.value for l in cls)})",
                error_code=ErrorCode.INVALID_LEVEL,
                field="level",
            ) from None


_LEVEL_RANK = {
    AlertLevel.INFO: 0,
    AlertLevel.WARNING: 1,
    AlertLevel.CRITICAL: 2,
}


class AlertStatus(Enum):
    """Alert lifecycle status. Transitions only move forward."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"

    @classmethod
    def parse(cls, value) -> "AlertStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid alert status '{value}' (expected one of: "
                f"{', '.join(s.value for s in cls)})",
                error_code=ErrorCode.INVALID_STATUS,
                field="status",
            ) from None


ALLOWED_TRANSITIONS: Dict[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
}


class ChannelType(Enum):
    """Notification delivery channel types."""

    MAIL = "mail"
    CHAT = "chat"


class DeliveryOutcome(Enum):
    """Outcome of one delivery attempt."""

    DELIVERED = "delivered"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


class OutputStyle(Enum):
    """Rendering styles for notification bodies and command output."""

    TEXT = "text"
    HTML = "html"
    JSON = "json"


@dataclass(frozen=True)
class EscalationLevel:
    """A single level in the escalation policy."""

    level: int
    after_minutes: int
    destinations: Tuple[str, ...] = ()

    @property
    def threshold(self) -> timedelta:
        return timedelta(minutes=self.after_minutes)


def _default_levels() -> Tuple[EscalationLevel, ...]:
    return (
        EscalationLevel(level=1, after_minutes=5),
        EscalationLevel(level=2, after_minutes=15),
        EscalationLevel(level=3, after_minutes=60),
    )


@dataclass(frozen=True)
class EscalationPolicy:
    """Age thresholds for raising an alert's escalation level.

    An active alert becomes eligible for level N once its age reaches the
    level-N threshold, its current escalation level is below N, and its
    severity is at or above ``min_severity``.
    """

    levels: Tuple[EscalationLevel, ...] = field(default_factory=_default_levels)
    max_level: int = 3
    min_severity: AlertLevel = AlertLevel.WARNING
    enabled: bool = True
    oncall_from_level: int = 1

    def __post_init__(self):
        previous_level = 0
        previous_minutes = -1
        for entry in self.levels:
            if entry.level != previous_level + 1:
                raise ConfigError(
                    f"Escalation levels must be consecutive from 1, got level {entry.level}",
                    source="escalation",
                )
            if entry.after_minutes < previous_minutes:
                raise ConfigError(
                    f"Escalation level {entry.level} threshold ({entry.after_minutes}m) "
                    f"is lower than the previous level",
                    source="escalation",
                )
            previous_level = entry.level
            previous_minutes = entry.after_minutes
        if self.max_level < 0 or self.max_level > len(self.levels):
            raise ConfigError(
                f"Escalation max level {self.max_level} has no threshold defined",
                source="escalation",
            )

    def threshold(self, level: int) -> Optional[timedelta]:
        """Age threshold for ``level``, or None if the level is not defined."""
        if 1 <= level <= self.max_level:
            return self.levels[level - 1].threshold
        return None

    def level_for_age(self, age: timedelta) -> int:
        """Highest escalation level whose threshold ``age`` has reached."""
        reached = 0
        for entry in self.levels[: self.max_level]:
            if age >= entry.threshold:
                reached = entry.level
        return reached

    def is_eligible_severity(self, level: AlertLevel) -> bool:
        return level.rank >= self.min_severity.rank

    def destinations_through(self, level: int) -> Tuple[str, ...]:
        """Extra destinations configured for levels 1..level, in order."""
        collected = []
        for entry in self.levels[: min(level, self.max_level)]:
            collected.extend(entry.destinations)
        return tuple(collected)


@dataclass(frozen=True)
class MailConfig:
    """Mail transport configuration."""

    enabled: bool = False
    host: str = "localhost"
    port: int = 25
    user: str = ""
    password: str = ""
    starttls: bool = False
    sender: str = "opsmon@localhost"
    style: OutputStyle = OutputStyle.HTML

    def is_configured(self) -> bool:
        return bool(self.host and self.sender)


@dataclass(frozen=True)
class ChatConfig:
    """Chat webhook configuration."""

    enabled: bool = False
    webhook_url: str = ""
    channel: str = ""
    username: str = "opsmon"
    emoji: str = ":rotating_light:"

    def is_configured(self) -> bool:
        return bool(self.webhook_url)


@dataclass(frozen=True)
class OnCallMember:
    """A member of the on-call rotation and the destination that reaches them."""

    name: str
    contact: str = ""


@dataclass(frozen=True)
class OnCallConfig:
    """On-call rotation configuration."""

    enabled: bool = True
    members: Tuple[OnCallMember, ...] = ()
    period_days: int = 7
    anchor: date = date(2025, 1, 6)


@dataclass(frozen=True)
class AlertConfig:
    """Process-wide alerting configuration, immutable for one invocation."""

    rules_file: str = "config/alert_rules.conf"
    templates_dir: str = "config/alert_templates"
    default_destinations: Tuple[str, ...] = ()
    renotify_on_duplicate: bool = False
    escalation: EscalationPolicy = field(default_factory=EscalationPolicy)
    mail: MailConfig = field(default_factory=MailConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    oncall: OnCallConfig = field(default_factory=OnCallConfig)
    transport_timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "AlertConfig":
        """Freeze a Settings object into an AlertConfig.

        Unknown style or severity names degrade to the defaults with a
        warning. Structural problems (escalation thresholds, anchor date)
        raise ConfigError.
        """
        escalation = EscalationPolicy(
            levels=(
                EscalationLevel(
                    1,
                    settings.escalation_level1_minutes,
                    split_csv(settings.escalation_level1_destinations),
                ),
                EscalationLevel(
                    2,
                    settings.escalation_level2_minutes,
                    split_csv(settings.escalation_level2_destinations),
                ),
                EscalationLevel(
                    3,
                    settings.escalation_level3_minutes,
                    split_csv(settings.escalation_level3_destinations),
                ),
            ),
            max_level=settings.escalation_max_level,
            min_severity=_parse_or_default(
                AlertLevel, settings.escalation_min_severity, AlertLevel.WARNING,
                "escalation_min_severity",
            ),
            enabled=settings.escalation_enabled,
            oncall_from_level=settings.escalation_oncall_from_level,
        )
        mail = MailConfig(
            enabled=settings.send_alert_email,
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            sender=settings.email_from,
            style=_parse_or_default(
                OutputStyle, settings.email_style, OutputStyle.HTML, "email_style",
            ),
        )
        chat = ChatConfig(
            enabled=settings.slack_enabled,
            webhook_url=settings.slack_webhook_url,
            channel=settings.slack_channel,
            username=settings.slack_username,
            emoji=settings.slack_emoji,
        )
        try:
            anchor = date.fromisoformat(settings.oncall_anchor_date)
        except ValueError:
            raise ConfigError(
                f"Invalid on-call anchor date '{settings.oncall_anchor_date}'",
                source="oncall_anchor_date",
            ) from None
        if settings.oncall_period_days < 1:
            raise ConfigError("On-call period must be at least one day", source="oncall_period_days")
        oncall = OnCallConfig(
            enabled=settings.oncall_rotation_enabled,
            members=parse_members(settings.oncall_members),
            period_days=settings.oncall_period_days,
            anchor=anchor,
        )
        return cls(
            rules_file=settings.rules_file,
            templates_dir=settings.templates_dir,
            default_destinations=split_csv(settings.default_destinations),
            renotify_on_duplicate=settings.renotify_on_duplicate,
            escalation=escalation,
            mail=mail,
            chat=chat,
            oncall=oncall,
            transport_timeout_seconds=settings.transport_timeout_seconds,
        )


def split_csv(value: str) -> Tuple[str, ...]:
    """Split a comma-separated setting into stripped, non-empty items."""
    return tuple(item.strip() for item in (value or "").split(",") if item.strip())


def parse_members(value: str) -> Tuple[OnCallMember, ...]:
    """Parse ``name:contact`` pairs; a bare name has no contact."""
    members = []
    for item in split_csv(value):
        name, _, contact = item.partition(":")
        name = name.strip()
        if not name:
            logger.warning("Skipping on-call member with empty name: %r", item)
            continue
        members.append(OnCallMember(name=name, contact=contact.strip()))
    return tuple(members)


def _parse_or_default(enum_cls, value, default, setting_name):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        logger.warning(
            "Invalid %s %r, using %s", setting_name, value, default.value,
        )
        return default
