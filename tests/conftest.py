"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from opsmon.db import get_session_factory, init_db  # noqa: E402


class FakeClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 2, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    """In-memory SQLite engine with the alerting schema."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock()


class RecordingMailTransport:
    """Mail transport double that records messages or fails on demand."""

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, to, subject, body, content_type):
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "body": body, "content_type": content_type})


class RecordingChatTransport:
    """Chat transport double that records posts or fails on demand."""

    def __init__(self):
        self.posts = []
        self.error = None

    def post(self, url, payload):
        if self.error is not None:
            raise self.error
        self.posts.append({"url": url, "payload": payload})


@pytest.fixture
def mail_transport():
    return RecordingMailTransport()


@pytest.fixture
def chat_transport():
    return RecordingChatTransport()


@pytest.fixture
def make_manager(engine, clock, tmp_path, mail_transport, chat_transport):
    """Factory for an AlertManager wired to SQLite, the fake clock and recording transports."""
    from opsmon.alerting import AlertConfig, build_alert_manager
    from opsmon.alerting.config import ChatConfig, MailConfig, OutputStyle

    def _make(rules="*:*:*:ops@example.com,chat\n", **overrides):
        rules_file = tmp_path / "alert_rules.conf"
        rules_file.write_text(rules)
        values = dict(
            rules_file=str(rules_file),
            templates_dir=str(tmp_path / "templates"),
            mail=MailConfig(enabled=True, style=OutputStyle.TEXT),
            chat=ChatConfig(enabled=True, webhook_url="https://hooks.example.com/T000/B000"),
        )
        values.update(overrides)
        return build_alert_manager(
            config=AlertConfig(**values),
            engine=engine,
            mail_transport=mail_transport,
            chat_transport=chat_transport,
            clock=clock,
        )

    return _make
