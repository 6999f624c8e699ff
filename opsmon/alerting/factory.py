"""Alert lifecycle management - Component wiring."""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from opsmon.db import get_session_factory
from opsmon.errors import ConfigError
from opsmon.settings import Settings, get_settings

from .channels import ChatTransport, MailTransport, build_dispatcher
from .config import AlertConfig
from .dedup import Deduplicator
from .escalation import EscalationEngine
from .formatter import NotificationFormatter
from .manager import AlertManager
from .models import utcnow
from .notifier import AlertNotifier
from .oncall import OnCallSchedule
from .routing import RoutingEngine
from .store import AlertStore
from .templates import TemplateStore

logger = logging.getLogger(__name__)


def load_router(rules_file: str) -> RoutingEngine:
    """Routing engine for this invocation; an unreadable source means no rules."""
    try:
        return RoutingEngine.from_file(rules_file)
    except ConfigError as exc:
        logger.warning("Routing rules unavailable, using defaults: %s", exc.message)
        return RoutingEngine()


def build_alert_manager(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    config: Optional[AlertConfig] = None,
    mail_transport: Optional[MailTransport] = None,
    chat_transport: Optional[ChatTransport] = None,
    clock: Callable[[], datetime] = utcnow,
) -> AlertManager:
    """Build an AlertManager with every component wired from configuration.

    Args:
        settings: Settings to freeze; defaults to the process settings.
        engine: Database engine; defaults to the process engine.
        config: Prebuilt configuration, overriding ``settings``.
        mail_transport: Replacement mail transport.
        chat_transport: Replacement chat transport.
        clock: Source of the current naive UTC time.
    """
    if config is None:
        config = AlertConfig.from_settings(settings or get_settings())

    store = AlertStore(get_session_factory(engine), clock=clock)
    router = load_router(config.rules_file)
    templates = TemplateStore(config.templates_dir)
    formatter = NotificationFormatter(templates, config.chat)
    dispatcher = build_dispatcher(
        config.mail,
        config.chat,
        config.transport_timeout_seconds,
        mail_transport=mail_transport,
        chat_transport=chat_transport,
    )
    oncall = OnCallSchedule(config.oncall, store, clock=clock)
    notifier = AlertNotifier(config, store, router, formatter, dispatcher, oncall)
    escalation = EscalationEngine(store, notifier, config.escalation, clock=clock)

    return AlertManager(
        config=config,
        store=store,
        deduplicator=Deduplicator(store, config.renotify_on_duplicate),
        notifier=notifier,
        escalation=escalation,
        oncall=oncall,
        router=router,
        templates=templates,
        clock=clock,
    )
