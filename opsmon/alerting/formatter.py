"""Alert lifecycle management - Notification formatting."""

import html
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Dict, Optional, Union

from .config import AlertLevel, ChatConfig, OutputStyle
from .models import Alert
from .templates import TemplateStore, render_template

logger = logging.getLogger(__name__)

LEVEL_COLORS = {
    AlertLevel.CRITICAL: "#dc3545",
    AlertLevel.WARNING: "#ffc107",
    AlertLevel.INFO: "#17a2b8",
}

LEVEL_EMOJI = {
    AlertLevel.CRITICAL: ":red_circle:",
    AlertLevel.WARNING: ":warning:",
    AlertLevel.INFO: ":information_source:",
}

CONTENT_TYPES = {
    OutputStyle.TEXT: "text/plain",
    OutputStyle.HTML: "text/html",
    OutputStyle.JSON: "application/json",
}

DEFAULT_TEMPLATE = "default"

# Everything below 0x20 except tab and newline, plus DEL.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def strip_control(value: Any) -> str:
    return _CONTROL_CHARS.sub("", str(value))


def _timestamp(alert: Alert) -> str:
    return alert.created_at.strftime("%Y-%m-%d %H:%M:%S UTC")


@dataclass
class NotificationPayload:
    """A rendered notification, ready for any channel."""

    alert_id: str
    subject: str
    body: str
    content_type: str
    chat: Dict[str, Any] = field(default_factory=dict)
    escalation_level: int = 0


class NotificationFormatter:
    """Renders alerts as text, HTML or JSON and builds chat messages.

    Args:
        templates: Template store consulted for text rendering.
        chat: Chat settings used for the webhook message envelope.
    """

    def __init__(
        self,
        templates: Optional[TemplateStore] = None,
        chat: Optional[ChatConfig] = None,
    ) -> None:
        self._templates = templates
        self._chat = chat or ChatConfig()

    @staticmethod
    def resolve_style(style: Union[OutputStyle, str, None]) -> OutputStyle:
        """Coerce a style name, falling back to text for unknown values."""
        if isinstance(style, OutputStyle):
            return style
        try:
            return OutputStyle(str(style).strip().lower())
        except ValueError:
            logger.warning("Unknown notification style %r, using text", style)
            return OutputStyle.TEXT

    def format(self, alert: Alert, style: Union[OutputStyle, str] = OutputStyle.TEXT) -> str:
        resolved = self.resolve_style(style)
        if resolved == OutputStyle.HTML:
            return self.format_html(alert)
        if resolved == OutputStyle.JSON:
            return self.format_json(alert)
        return self.format_text(alert)

    def subject(self, alert: Alert) -> str:
        subject = f"[{alert.level.value.upper()}] {alert.component}: {alert.alert_type}"
        if alert.escalation_level:
            subject += f" (escalation level {alert.escalation_level})"
        return strip_control(subject).replace("\n", " ")

    def build_payload(
        self, alert: Alert, style: Union[OutputStyle, str] = OutputStyle.TEXT
    ) -> NotificationPayload:
        resolved = self.resolve_style(style)
        return NotificationPayload(
            alert_id=alert.alert_id,
            subject=self.subject(alert),
            body=self.format(alert, resolved),
            content_type=CONTENT_TYPES[resolved],
            chat=self.chat_message(alert),
            escalation_level=alert.escalation_level,
        )

    # ── Styles ────────────────────────────────────────────────────────

    def _template_values(self, alert: Alert) -> Dict[str, str]:
        values = {
            "id": alert.alert_id,
            "component": alert.component,
            "level": alert.level.value,
            "level_upper": alert.level.value.upper(),
            "type": alert.alert_type,
            "message": alert.message,
            "status": alert.status.value,
            "escalation_level": str(alert.escalation_level),
            "occurrences": str(alert.occurrence_count),
            "timestamp": _timestamp(alert),
            "metadata": self._metadata_lines(alert),
        }
        return {k: strip_control(v) for k, v in values.items()}

    @staticmethod
    def _metadata_lines(alert: Alert) -> str:
        return "\n".join(f"  {k}: {v}" for k, v in sorted(alert.metadata.items()))

    def format_text(self, alert: Alert) -> str:
        template = None
        if self._templates is not None:
            template = self._templates.find(alert.alert_type) or self._templates.find(DEFAULT_TEMPLATE)
        values = self._template_values(alert)
        if template is not None:
            return render_template(template, values)

        lines = [
            f"[{values['level_upper']}] {values['component']} alert",
            f"Type: {values['type']}",
            f"Message: {values['message']}",
            f"Status: {values['status']}",
            f"Escalation level: {values['escalation_level']}",
            f"Occurrences: {values['occurrences']}",
            f"Timestamp: {values['timestamp']}",
            f"Alert ID: {values['id']}",
        ]
        if alert.metadata:
            lines.append("Metadata:")
            lines.append(values["metadata"])
        return "\n".join(lines) + "\n"

    def format_html(self, alert: Alert) -> str:
        def esc(value: Any) -> str:
            return html.escape(strip_control(value), quote=True)

        color = LEVEL_COLORS[alert.level]
        rows = [
            ("Component", alert.component),
            ("Level", alert.level.value.upper()),
            ("Type", alert.alert_type),
            ("Message", alert.message),
            ("Status", alert.status.value),
            ("Escalation level", alert.escalation_level),
            ("Timestamp", _timestamp(alert)),
            ("Alert ID", alert.alert_id),
        ]
        table = "\n".join(
            f"<tr><th align=\"left\">{esc(k)}</th><td>{esc(v)}</td></tr>" for k, v in rows
        )
        metadata = ""
        if alert.metadata:
            meta_rows = "\n".join(
                f"<tr><th align=\"left\">{esc(k)}</th><td>{esc(v)}</td></tr>"
                for k, v in sorted(alert.metadata.items())
            )
            metadata = f"<h3>Metadata:</h3>\n<table>\n{meta_rows}\n</table>\n"

        return (
            "<!DOCTYPE html>\n"
            "<html>\n<head>\n<meta charset=\"utf-8\">\n"
            f"<title>{esc(self.subject(alert))}</title>\n"
            "</head>\n<body>\n"
            f"<div style=\"border-left: 6px solid {color}; padding: 8px 16px;\">\n"
            f"<h2 style=\"color: {color};\">{esc(alert.level.value.upper())}: "
            f"{esc(alert.component)}</h2>\n"
            f"<table>\n{table}\n</table>\n"
            f"{metadata}"
            "</div>\n</body>\n</html>\n"
        )

    def format_json(self, alert: Alert) -> str:
        document = {
            "id": alert.alert_id,
            "component": alert.component,
            "alert_level": alert.level.value,
            "alert_type": alert.alert_type,
            "message": alert.message,
            "metadata": alert.metadata or None,
            "status": alert.status.value,
            "escalation_level": alert.escalation_level,
            "timestamp": alert.created_at.isoformat(),
        }
        return json.dumps(document, default=str)

    def chat_message(self, alert: Alert) -> Dict[str, Any]:
        """Webhook message with one colour-coded attachment."""
        fields = [
            {"title": "Component", "value": strip_control(alert.component), "short": True},
            {"title": "Type", "value": strip_control(alert.alert_type), "short": True},
            {"title": "Status", "value": alert.status.value, "short": True},
            {"title": "Timestamp", "value": _timestamp(alert), "short": True},
        ]
        if alert.escalation_level:
            fields.append(
                {"title": "Escalation level", "value": str(alert.escalation_level), "short": True}
            )
        for key, value in sorted(alert.metadata.items()):
            fields.append({
                "title": strip_control(key).replace("_", " ").title(),
                "value": strip_control(value),
                "short": True,
            })

        message: Dict[str, Any] = {
            "text": (
                f"{LEVEL_EMOJI[alert.level]} *[{alert.level.value.upper()}] "
                f"{strip_control(alert.component)}*: {strip_control(alert.message)}"
            ),
            "username": self._chat.username,
            "icon_emoji": self._chat.emoji,
            "attachments": [
                {
                    "color": LEVEL_COLORS[alert.level],
                    "fields": fields,
                    "footer": f"opsmon alert {alert.alert_id}",
                    "ts": int(alert.created_at.replace(tzinfo=timezone.utc).timestamp()),
                }
            ],
        }
        if self._chat.channel:
            message["channel"] = self._chat.channel
        return message
