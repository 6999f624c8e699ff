"""Alert Lifecycle Management.

Deduplicated alert raising, rule-based routing, multi-channel
notification, time-based escalation and on-call rotation, backed by a
relational store.
"""

from .channels import (
    ChannelDispatcher,
    ChatChannel,
    DeliveryReport,
    DeliveryResult,
    MailChannel,
    SmtpMailTransport,
    WebhookChatTransport,
)
from .config import (
    AlertConfig,
    AlertLevel,
    AlertStatus,
    ChannelType,
    DeliveryOutcome,
    EscalationLevel,
    EscalationPolicy,
    OutputStyle,
)
from .dedup import DedupResult, Deduplicator
from .escalation import EscalationEngine, EscalationReport, EscalationResult
from .factory import build_alert_manager
from .formatter import NotificationFormatter, NotificationPayload
from .manager import AlertGroup, AlertManager, AlertStats, RaiseResult
from .models import Alert, compute_fingerprint
from .oncall import OnCallAssignment, OnCallSchedule
from .routing import Destination, RoutingEngine, RoutingRule, RuleFile, parse_rules
from .store import AlertStore
from .templates import TemplateStore

__all__ = [
    # Config
    "AlertConfig",
    "AlertLevel",
    "AlertStatus",
    "ChannelType",
    "DeliveryOutcome",
    "EscalationLevel",
    "EscalationPolicy",
    "OutputStyle",
    # Model & store
    "Alert",
    "AlertStore",
    "compute_fingerprint",
    # Dedup
    "DedupResult",
    "Deduplicator",
    # Routing
    "Destination",
    "RoutingEngine",
    "RoutingRule",
    "RuleFile",
    "parse_rules",
    # Formatting & channels
    "NotificationFormatter",
    "NotificationPayload",
    "TemplateStore",
    "ChannelDispatcher",
    "ChatChannel",
    "MailChannel",
    "DeliveryReport",
    "DeliveryResult",
    "SmtpMailTransport",
    "WebhookChatTransport",
    # Escalation & on-call
    "EscalationEngine",
    "EscalationReport",
    "EscalationResult",
    "OnCallAssignment",
    "OnCallSchedule",
    # Manager
    "AlertGroup",
    "AlertManager",
    "AlertStats",
    "RaiseResult",
    "build_alert_manager",
]
