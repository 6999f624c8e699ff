"""Alert lifecycle management - Alert Routing.

Rules map ``(component, level, type)`` patterns to destinations. Rule
sources hold one rule per line::

    component:level:type:destination[,destination...]

``*`` matches anything. Blank lines and ``#`` comments are ignored.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from opsmon.errors import ConfigError, ErrorCode, NotFoundError, ValidationError

from .config import AlertLevel, ChannelType

logger = logging.getLogger(__name__)

WILDCARD = "*"

_CHAT_ALIASES = ("chat", "slack")


@dataclass(frozen=True)
class Destination:
    """Where one notification goes.

    ``target`` is a mail address for the mail channel. For the chat
    channel it is empty (configured webhook), a ``#channel`` override, or
    a webhook URL.
    """

    channel: ChannelType
    target: str = ""

    @property
    def is_webhook_url(self) -> bool:
        return self.target.startswith(("http://", "https://"))

    def __str__(self) -> str:
        if self.channel == ChannelType.MAIL:
            return self.target
        return f"chat:{self.target}" if self.target else "chat"


def parse_destination(raw: str) -> Destination:
    """Parse one destination token.

    Raises:
        ConfigError: If the token is empty or not a recognised destination.
    """
    value = raw.strip()
    lowered = value.lower()
    if not value:
        raise ConfigError("Empty destination")
    if lowered.startswith("mail:"):
        address = value[len("mail:"):].strip()
        if "@" not in address:
            raise ConfigError(f"Invalid mail destination '{value}'")
        return Destination(ChannelType.MAIL, address)
    if lowered in _CHAT_ALIASES:
        return Destination(ChannelType.CHAT)
    for alias in _CHAT_ALIASES:
        if lowered.startswith(alias + ":"):
            return Destination(ChannelType.CHAT, value[len(alias) + 1:].strip())
    if lowered.startswith(("http://", "https://")):
        return Destination(ChannelType.CHAT, value)
    if "@" in value and " " not in value:
        return Destination(ChannelType.MAIL, value)
    raise ConfigError(f"Unrecognised destination '{value}'")


def parse_destinations(values: Union[str, Iterable[str]]) -> List[Destination]:
    """Parse several destinations, skipping invalid ones with a warning."""
    if isinstance(values, str):
        values = values.split(",")
    parsed: List[Destination] = []
    for raw in values:
        if not raw.strip():
            continue
        try:
            destination = parse_destination(raw)
        except ConfigError as exc:
            logger.warning("Ignoring destination: %s", exc.message)
            continue
        if destination not in parsed:
            parsed.append(destination)
    return parsed


@dataclass(frozen=True)
class RoutingRule:
    """A rule that maps alert attributes to destinations."""

    component: str
    level: str
    alert_type: str
    destinations: Tuple[Destination, ...] = field(default_factory=tuple)
    position: int = 0
    destination_text: str = ""

    @property
    def specificity(self) -> int:
        """Component match outranks level, which outranks type."""
        score = 0
        if self.component != WILDCARD:
            score += 4
        if self.level != WILDCARD:
            score += 2
        if self.alert_type != WILDCARD:
            score += 1
        return score

    def matches(self, component: str, level: str, alert_type: str) -> bool:
        return (
            self.component in (WILDCARD, component)
            and self.level in (WILDCARD, level)
            and self.alert_type in (WILDCARD, alert_type)
        )

    def same_patterns(self, component: str, level: str, alert_type: str) -> bool:
        return (self.component, self.level, self.alert_type) == (component, level, alert_type)

    def to_line(self) -> str:
        destination = self.destination_text or ",".join(str(d) for d in self.destinations)
        return f"{self.component}:{self.level}:{self.alert_type}:{destination}"


def parse_rule_line(line: str, position: int = 0) -> RoutingRule:
    """Parse a single rule line.

    Only the first three separators split fields, so the destination
    may itself contain ``:``.

    Raises:
        ConfigError: If the line is not a valid rule.
    """
    parts = [p.strip() for p in line.strip().split(":", 3)]
    if len(parts) != 4 or not all(parts):
        raise ConfigError(f"Expected component:level:type:destination, got '{line.strip()}'")
    component, level, alert_type, destination_text = parts
    level = level.lower()
    if level != WILDCARD:
        try:
            AlertLevel(level)
        except ValueError:
            raise ConfigError(f"Unknown level '{level}' in rule '{line.strip()}'") from None

    destinations = parse_destinations(destination_text)
    if not destinations:
        raise ConfigError(f"No valid destination in rule '{line.strip()}'")
    return RoutingRule(
        component=component,
        level=level,
        alert_type=alert_type,
        destinations=tuple(destinations),
        position=position,
        destination_text=destination_text,
    )


def parse_rules(text: str, source: str = "<rules>") -> List[RoutingRule]:
    """Parse a rule source, skipping malformed lines with a warning."""
    rules: List[RoutingRule] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            rules.append(parse_rule_line(stripped, position=len(rules)))
        except ConfigError as exc:
            logger.warning("Skipping malformed routing rule at %s:%d: %s", source, lineno, exc.message)
    return rules


def _read_source(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read routing rules from {path}: {exc}", source=str(path)) from exc


class RoutingEngine:
    """Routes alerts to destinations using the most specific matching rule.

    Rules are evaluated by specificity (higher first), with ties going to
    the rule that appears first in the source. The first matching rule
    determines the destinations. No match yields an empty list.
    """

    def __init__(self, rules: Iterable[RoutingRule] = ()) -> None:
        self._rules: List[RoutingRule] = list(rules)
        self._ordered = self._sort(self._rules)

    @staticmethod
    def _sort(rules: List[RoutingRule]) -> List[RoutingRule]:
        return sorted(rules, key=lambda r: (-r.specificity, r.position))

    @classmethod
    def from_text(cls, text: str, source: str = "<rules>") -> "RoutingEngine":
        return cls(parse_rules(text, source))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RoutingEngine":
        """Load rules from a file.

        A missing file yields an engine with no rules.

        Raises:
            ConfigError: If the file exists but cannot be read or decoded.
        """
        path = Path(path)
        if not path.exists():
            logger.info("No routing rules file at %s", path)
            return cls()
        return cls.from_text(_read_source(path), source=str(path))

    def add_rule(self, rule: RoutingRule) -> None:
        """Add a rule after the existing ones."""
        self._rules.append(
            RoutingRule(
                component=rule.component,
                level=rule.level,
                alert_type=rule.alert_type,
                destinations=rule.destinations,
                position=len(self._rules),
                destination_text=rule.destination_text,
            )
        )
        self._ordered = self._sort(self._rules)

    def match(self, component: str, level: str, alert_type: str) -> Optional[RoutingRule]:
        """The winning rule for an alert, or None."""
        for rule in self._ordered:
            if rule.matches(component, level, alert_type):
                return rule
        return None

    def resolve(self, component: str, level: str, alert_type: str) -> List[Destination]:
        """Determine which destinations an alert should be routed to.

        Args:
            component: Alert component.
            level: Alert level name.
            alert_type: Alert type.

        Returns:
            Ordered, de-duplicated destinations of the winning rule, or an
            empty list when nothing matches.
        """
        rule = self.match(component, level, alert_type)
        if rule is None:
            logger.debug("No routing rule for %s/%s/%s", component, level, alert_type)
            return []
        logger.debug(
            "Routing %s/%s/%s -> %s", component, level, alert_type, rule.destination_text,
        )
        return list(rule.destinations)

    def get_rules(self, component: Optional[str] = None) -> List[RoutingRule]:
        """Rules in source order, optionally only those that can apply to ``component``."""
        if component is None:
            return list(self._rules)
        return [r for r in self._rules if r.component in (WILDCARD, component)]


class RuleFile:
    """Editable rule source on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> RoutingEngine:
        return RoutingEngine.from_file(self.path)

    def add(self, component: str, level: str, alert_type: str, destination: str) -> RoutingRule:
        """Append a rule line.

        Raises:
            ValidationError: If the fields do not form a valid rule.
        """
        if any(":" in part for part in (component, level, alert_type)):
            raise ValidationError("Rule patterns cannot contain ':'", field="rule")
        try:
            rule = parse_rule_line(f"{component}:{level}:{alert_type}:{destination}")
        except ConfigError as exc:
            raise ValidationError(exc.message, field="rule") from None

        existing = _read_source(self.path) if self.path.exists() else ""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(f"{prefix}{rule.to_line()}\n")
        logger.info("Added routing rule: %s", rule.to_line())
        return rule

    def remove(self, component: str, level: str, alert_type: str) -> int:
        """Remove every rule with exactly these patterns.

        Returns:
            Number of rule lines removed.

        Raises:
            NotFoundError: If no rule has these patterns.
        """
        if not self.path.exists():
            raise NotFoundError(
                f"No routing rules file at {self.path}",
                error_code=ErrorCode.RULE_NOT_FOUND,
                resource_type="rule",
                resource_id=f"{component}:{level}:{alert_type}",
            )
        kept, removed = [], 0
        for line in _read_source(self.path).splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                try:
                    rule = parse_rule_line(stripped)
                except ConfigError:
                    rule = None
                if rule is not None and rule.same_patterns(component, level.lower(), alert_type):
                    removed += 1
                    continue
            kept.append(line)

        if not removed:
            raise NotFoundError(
                f"No routing rule for {component}:{level}:{alert_type}",
                error_code=ErrorCode.RULE_NOT_FOUND,
                resource_type="rule",
                resource_id=f"{component}:{level}:{alert_type}",
            )
        self.path.write_text("\n".join(kept) + ("\n" if kept else ""), encoding="utf-8")
        logger.info("Removed %d routing rule(s) for %s:%s:%s", removed, component, level, alert_type)
        return removed
