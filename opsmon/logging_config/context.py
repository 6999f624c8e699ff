"""Invocation Context Management.

Each opsmon command, check run, or escalation sweep is a short-lived
invocation. The context binds an invocation ID, the command name and the
acting operator to every log entry emitted while it is open.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


_invocation_id_var: ContextVar[str] = ContextVar("invocation_id", default="")
_command_var: ContextVar[str] = ContextVar("command", default="")
_actor_var: ContextVar[str] = ContextVar("actor", default="")
_extra_context_var: ContextVar[Optional[dict]] = ContextVar("extra_context", default=None)


def generate_invocation_id() -> str:
    """Generate a unique invocation ID using UUID4."""
    return str(uuid.uuid4())


def get_invocation_id() -> str:
    """Get the current invocation ID from context."""
    return _invocation_id_var.get()


def get_command() -> str:
    return _command_var.get()


def get_actor() -> str:
    return _actor_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    invocation_id = _invocation_id_var.get()
    if invocation_id:
        ctx["invocation_id"] = invocation_id
    command = _command_var.get()
    if command:
        ctx["command"] = command
    actor = _actor_var.get()
    if actor:
        ctx["actor"] = actor
    extra = _extra_context_var.get() or {}
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class InvocationContext:
    """Context manager for invocation-scoped logging context.

    Example:
        with InvocationContext(command="acknowledge", actor="alice"):
            logger.info("acknowledging alert")  # includes invocation_id, actor
    """

    invocation_id: str = ""
    command: str = ""
    actor: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.invocation_id:
            self.invocation_id = generate_invocation_id()

    def __enter__(self) -> "InvocationContext":
        self._tokens = [
            (_invocation_id_var, _invocation_id_var.set(self.invocation_id)),
            (_command_var, _command_var.set(self.command)),
            (_actor_var, _actor_var.set(self.actor)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get() or {}
        updated = {**current, **kwargs}
        _extra_context_var.set(updated)
        self.extra.update(kwargs)
