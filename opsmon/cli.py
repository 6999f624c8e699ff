"""opsmon command line: python main.py <command> [options]

Each invocation builds the alerting components from settings, runs one
command and exits. Results go to stdout (text or JSON); logs and errors
go to stderr.
"""

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple

from sqlalchemy.exc import SQLAlchemyError

from opsmon import __version__
from opsmon.alerting import AlertManager, build_alert_manager
from opsmon.alerting.oncall import parse_date
from opsmon.alerting.routing import RuleFile
from opsmon.db import init_db
from opsmon.errors import EXIT_OK, AlertingError, StoreError, ValidationError
from opsmon.logging_config import InvocationContext, LogFormat, LoggingConfig, LogLevel, configure_logging
from opsmon.settings import get_settings

logger = logging.getLogger(__name__)

Output = Tuple[Any, str]


# ── Text rendering ────────────────────────────────────────────────────


def _short(value: str, width: int) -> str:
    value = value.replace("\n", " ")
    return value if len(value) <= width else value[: width - 3] + "..."


def _alert_table(alerts) -> str:
    if not alerts:
        return "No alerts found"
    lines = [
        f"{'ID':36}  {'LEVEL':8}  {'STATUS':12}  {'ESC':3}  {'COUNT':5}  "
        f"{'COMPONENT':15}  {'TYPE':20}  {'CREATED':19}  MESSAGE"
    ]
    for a in alerts:
        lines.append(
            f"{a.alert_id:36}  {a.level.value:8}  {a.status.value:12}  {a.escalation_level:<3}  "
            f"{a.occurrence_count:<5}  {_short(a.component, 15):15}  {_short(a.alert_type, 20):20}  "
            f"{a.created_at:%Y-%m-%d %H:%M:%S}  {_short(a.message, 60)}"
        )
    return "\n".join(lines)


def _alert_detail(alert, deliveries: List[Dict[str, Any]]) -> str:
    lines = [
        f"Alert {alert.alert_id}",
        f"  Component:        {alert.component}",
        f"  Level:            {alert.level.value}",
        f"  Type:             {alert.alert_type}",
        f"  Message:          {alert.message}",
        f"  Status:           {alert.status.value}",
        f"  Escalation level: {alert.escalation_level}",
        f"  Occurrences:      {alert.occurrence_count}",
        f"  Created:          {alert.created_at:%Y-%m-%d %H:%M:%S}",
        f"  Updated:          {alert.updated_at:%Y-%m-%d %H:%M:%S}",
    ]
    if alert.acknowledged_at:
        lines.append(f"  Acknowledged:     {alert.acknowledged_at:%Y-%m-%d %H:%M:%S} by {alert.acknowledged_by}")
    if alert.resolved_at:
        lines.append(f"  Resolved:         {alert.resolved_at:%Y-%m-%d %H:%M:%S} by {alert.resolved_by}")
    if alert.metadata:
        lines.append("  Metadata:")
        for key, value in sorted(alert.metadata.items()):
            lines.append(f"    {key}: {json.dumps(value, default=str)}")
    if deliveries:
        lines.append("  Deliveries:")
        for d in deliveries:
            error = f" ({d['error']})" if d["error"] else ""
            lines.append(
                f"    {d['attempted_at']}  L{d['escalation_level']}  {d['channel']:4}  "
                f"{d['target']}  {d['outcome']}{error}"
            )
    return "\n".join(lines)


def _delivery_line(report) -> str:
    if report is None:
        return "Notifications: none sent"
    return (
        f"Notifications: {report.delivered} delivered, {report.suppressed} suppressed, "
        f"{report.failed} failed"
    )


# ── Commands ──────────────────────────────────────────────────────────


def _cmd_raise(manager: AlertManager, args) -> Output:
    metadata = None
    if args.metadata:
        try:
            metadata = json.loads(args.metadata)
        except ValueError as exc:
            raise ValidationError(f"Metadata is not valid JSON: {exc}", field="metadata") from None
    result = manager.raise_alert(args.component, args.level, args.type, args.message, metadata)
    if result.created:
        text = f"Alert raised: {result.alert.alert_id}"
    else:
        text = (
            f"Duplicate of active alert {result.alert.alert_id} "
            f"(occurrences: {result.alert.occurrence_count})"
        )
    return result.to_dict(), f"{text}\n{_delivery_line(result.delivery)}"


def _cmd_list(manager: AlertManager, args) -> Output:
    alerts = manager.list_alerts(component=args.component, status=args.status)
    return [a.to_dict() for a in alerts], _alert_table(alerts)


def _cmd_show(manager: AlertManager, args) -> Output:
    alert = manager.show(args.alert_id)
    if alert is None:
        return None, f"No alert found with id {args.alert_id}"
    deliveries = manager.deliveries(alert.alert_id)
    data = alert.to_dict()
    data["deliveries"] = deliveries
    return data, _alert_detail(alert, deliveries)


def _cmd_acknowledge(manager: AlertManager, args) -> Output:
    alert = manager.acknowledge(args.alert_id, args.actor)
    return alert.to_dict(), f"Alert {alert.alert_id} acknowledged by {alert.acknowledged_by}"


def _cmd_resolve(manager: AlertManager, args) -> Output:
    alert = manager.resolve(args.alert_id, args.actor)
    return alert.to_dict(), f"Alert {alert.alert_id} resolved by {alert.resolved_by}"


def _cmd_aggregate(manager: AlertManager, args) -> Output:
    groups = manager.aggregate(
        component=args.component,
        window_minutes=args.window,
        include_resolved=args.include_resolved,
    )
    if not groups:
        return [], f"No alerts in the last {args.window} minutes"
    lines = [f"Alerts in the last {args.window} minutes:"]
    lines.append(f"{'COMPONENT':15}  {'TYPE':20}  {'ALERTS':6}  {'OCCUR':6}  {'HIGHEST':8}  LAST SEEN")
    for g in groups:
        lines.append(
            f"{_short(g.component, 15):15}  {_short(g.alert_type, 20):20}  {g.count:<6}  "
            f"{g.occurrences:<6}  {g.highest_level.value:8}  {g.last_seen:%Y-%m-%d %H:%M:%S}"
        )
    return [g.to_dict() for g in groups], "\n".join(lines)


def _cmd_history(manager: AlertManager, args) -> Output:
    alerts = manager.history(args.component, args.days)
    header = f"Alert history for {args.component} (last {args.days} days):"
    return [a.to_dict() for a in alerts], f"{header}\n{_alert_table(alerts)}"


def _cmd_stats(manager: AlertManager, args) -> Output:
    stats = manager.stats(component=args.component)

    def _counts(counts: Dict[str, int]) -> str:
        return ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "none"

    def _minutes(value: Optional[float]) -> str:
        return f"{value:.1f} min" if value is not None else "n/a"

    lines = [
        f"Alert statistics{' for ' + args.component if args.component else ''}:",
        f"  Total:        {stats.total}",
        f"  By status:    {_counts(stats.by_status)}",
        f"  By level:     {_counts(stats.by_level)}",
        f"  By component: {_counts(stats.by_component)}",
        f"  Escalated:    {stats.escalated}",
        f"  Mean time to acknowledge: {_minutes(stats.mean_minutes_to_acknowledge)}",
        f"  Mean time to resolve:     {_minutes(stats.mean_minutes_to_resolve)}",
    ]
    return stats.to_dict(), "\n".join(lines)


def _cmd_cleanup(manager: AlertManager, args) -> Output:
    deleted = manager.cleanup(args.days)
    return {"deleted": deleted}, f"Deleted {deleted} resolved alert(s)"


def _cmd_escalate(manager: AlertManager, args) -> Output:
    result = manager.escalate(args.alert_id, args.level)
    text = (
        f"Alert {result.alert.alert_id} escalated from level {result.from_level} "
        f"to {result.to_level}\n{_delivery_line(result.delivery)}"
    )
    return result.to_dict(), text


def _cmd_check_escalation(manager: AlertManager, args) -> Output:
    report = manager.check_escalation(component=args.component)
    lines = [
        f"Checked {report.checked} active alert(s): {len(report.escalated)} escalated, "
        f"{report.skipped} unchanged, {len(report.failures)} failed"
    ]
    for alert_id, level in report.escalated:
        lines.append(f"  escalated {alert_id} to level {level}")
    for alert_id, error in report.failures:
        lines.append(f"  failed {alert_id}: {error}")
    return report.to_dict(), "\n".join(lines)


def _cmd_show_rules(manager: AlertManager, args) -> Output:
    rules = manager.router.get_rules(component=args.component)
    policy = manager.config.escalation
    lines = [f"Routing rules ({manager.config.rules_file}):"]
    if rules:
        lines.extend(f"  {rule.to_line()}" for rule in rules)
    else:
        lines.append("  (none)")
    defaults = ",".join(manager.config.default_destinations) or "(none)"
    lines.append(f"Default destinations: {defaults}")
    lines.append(
        f"Escalation policy ({'enabled' if policy.enabled else 'disabled'}, "
        f"min severity {policy.min_severity.value}):"
    )
    for entry in policy.levels[: policy.max_level]:
        extra = f" -> {','.join(entry.destinations)}" if entry.destinations else ""
        lines.append(f"  Level {entry.level}: after {entry.after_minutes} minutes{extra}")

    data = {
        "rules": [
            {
                "component": r.component,
                "level": r.level,
                "type": r.alert_type,
                "destination": r.destination_text,
            }
            for r in rules
        ],
        "default_destinations": list(manager.config.default_destinations),
        "escalation": {
            "enabled": policy.enabled,
            "min_severity": policy.min_severity.value,
            "max_level": policy.max_level,
            "levels": [
                {
                    "level": e.level,
                    "after_minutes": e.after_minutes,
                    "destinations": list(e.destinations),
                }
                for e in policy.levels[: policy.max_level]
            ],
        },
    }
    return data, "\n".join(lines)


def _cmd_add_rule(manager: AlertManager, args) -> Output:
    rule = RuleFile(manager.config.rules_file).add(
        args.component, args.level, args.type, args.destination,
    )
    return {"rule": rule.to_line()}, f"Added rule: {rule.to_line()}"


def _cmd_remove_rule(manager: AlertManager, args) -> Output:
    removed = RuleFile(manager.config.rules_file).remove(args.component, args.level, args.type)
    return {"removed": removed}, f"Removed {removed} rule(s) for {args.component}:{args.level}:{args.type}"


def _cmd_templates(manager: AlertManager, args) -> Output:
    names = manager.templates.names()
    if not names:
        return [], f"No templates in {manager.templates.directory}"
    return names, "Templates:\n" + "\n".join(f"  {n}" for n in names)


def _cmd_show_template(manager: AlertManager, args) -> Output:
    content = manager.templates.get(args.name)
    return {"name": args.name, "content": content}, content.rstrip("\n")


def _cmd_add_template(manager: AlertManager, args) -> Output:
    path = manager.templates.add(args.name, args.content)
    return {"name": args.name, "path": str(path)}, f"Saved template {args.name} ({path})"


def _cmd_show_oncall(manager: AlertManager, args) -> Output:
    on_date = parse_date(args.date) if args.date else None
    assignment = manager.on_call(on_date)
    if assignment.member is None:
        return assignment.to_dict(), "No on-call members configured"
    contact = f" ({assignment.member.contact})" if assignment.member.contact else ""
    text = (
        f"Current on-call for {assignment.on_date.isoformat()}: {assignment.member.name}{contact}\n"
        f"Rotation period: {assignment.period_start.isoformat()} to {assignment.period_end.isoformat()}"
    )
    return assignment.to_dict(), text


def _cmd_rotate_oncall(manager: AlertManager, args) -> Output:
    assignment = manager.rotate_on_call(actor=args.actor)
    if assignment is None:
        return {"rotated": False}, "On-call rotation is disabled or has no members; nothing rotated"
    data = assignment.to_dict()
    data["rotated"] = True
    return data, f"Rotated on-call to {assignment.member.name}"


def _cmd_init_db(manager: AlertManager, args) -> Output:
    try:
        init_db()
    except SQLAlchemyError as exc:
        logger.error("Schema initialization failed: %s", exc)
        raise StoreError(f"Schema initialization failed: {exc}", cause=exc) from exc
    return {"initialized": True}, "Database schema initialized"


COMMANDS: Dict[str, Callable[[AlertManager, argparse.Namespace], Output]] = {
    "raise": _cmd_raise,
    "list": _cmd_list,
    "show": _cmd_show,
    "acknowledge": _cmd_acknowledge,
    "resolve": _cmd_resolve,
    "aggregate": _cmd_aggregate,
    "history": _cmd_history,
    "stats": _cmd_stats,
    "cleanup": _cmd_cleanup,
    "escalate": _cmd_escalate,
    "check-escalation": _cmd_check_escalation,
    "show-rules": _cmd_show_rules,
    "add-rule": _cmd_add_rule,
    "remove-rule": _cmd_remove_rule,
    "templates": _cmd_templates,
    "show-template": _cmd_show_template,
    "add-template": _cmd_add_template,
    "show-oncall": _cmd_show_oncall,
    "rotate-oncall": _cmd_rotate_oncall,
    "init-db": _cmd_init_db,
}


# ── Parser ────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opsmon",
        description="opsmon - Alert lifecycle management",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--format", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "--log-level", choices=[level.value for level in LogLevel], type=str.upper, default=None,
        help="Log level (default: from OPSMON_LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.required = True

    p = sub.add_parser("raise", help="Raise an alert (deduplicated)")
    p.add_argument("component")
    p.add_argument("level", help="info, warning or critical")
    p.add_argument("type")
    p.add_argument("message")
    p.add_argument("--metadata", help="JSON object with extra details")

    p = sub.add_parser("list", help="List alerts, newest first")
    p.add_argument("--component")
    p.add_argument("--status", help="active, acknowledged or resolved")

    p = sub.add_parser("show", help="Show one alert and its deliveries")
    p.add_argument("alert_id")

    for name, verb in (("acknowledge", "Acknowledge"), ("resolve", "Resolve")):
        p = sub.add_parser(name, help=f"{verb} an alert")
        p.add_argument("alert_id")
        p.add_argument("actor")

    p = sub.add_parser("aggregate", help="Group recent alerts by component and type")
    p.add_argument("--component")
    p.add_argument("--window", type=int, default=60, help="Window in minutes (default: 60)")
    p.add_argument("--include-resolved", action="store_true")

    p = sub.add_parser("history", help="Alert history for a component")
    p.add_argument("component")
    p.add_argument("days", type=int, nargs="?", default=7)

    p = sub.add_parser("stats", help="Alert statistics")
    p.add_argument("--component")

    p = sub.add_parser("cleanup", help="Delete resolved alerts older than N days (0 = all)")
    p.add_argument("days", type=int)

    p = sub.add_parser("escalate", help="Escalate an alert to a level")
    p.add_argument("alert_id")
    p.add_argument("level", type=int)

    p = sub.add_parser("check-escalation", help="Escalate aged active alerts")
    p.add_argument("--component")

    p = sub.add_parser("show-rules", help="Show routing rules and escalation policy")
    p.add_argument("--component")

    p = sub.add_parser("add-rule", help="Add a routing rule")
    p.add_argument("component")
    p.add_argument("level")
    p.add_argument("type")
    p.add_argument("destination")

    p = sub.add_parser("remove-rule", help="Remove routing rules with these patterns")
    p.add_argument("component")
    p.add_argument("level")
    p.add_argument("type")

    sub.add_parser("templates", help="List notification templates")

    p = sub.add_parser("show-template", help="Show a notification template")
    p.add_argument("name")

    p = sub.add_parser("add-template", help="Create or replace a notification template")
    p.add_argument("name")
    p.add_argument("content")

    p = sub.add_parser("show-oncall", help="Show who is on call")
    p.add_argument("--date", help="YYYY-MM-DD (default: today, UTC)")

    p = sub.add_parser("rotate-oncall", help="Hand on-call to the next member")
    p.add_argument("--actor", default="system")

    sub.add_parser("init-db", help="Create database tables (development)")
    return parser


def _emit(data: Any, text: str, fmt: str, out: TextIO) -> None:
    if fmt == "json":
        out.write(json.dumps(data, indent=2, default=str) + "\n")
    else:
        out.write(text + "\n")


def main(
    argv: Optional[List[str]] = None,
    manager: Optional[AlertManager] = None,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
) -> int:
    """Run one command and return its exit code."""
    out = out or sys.stdout
    err = err or sys.stderr
    args = build_parser().parse_args(argv)

    settings = get_settings()
    level_name = (args.log_level or settings.log_level).upper()
    configure_logging(
        LoggingConfig(
            level=LogLevel(level_name) if level_name in LogLevel.__members__ else LogLevel.INFO,
            format=LogFormat.JSON if settings.log_format.lower() == "json" else LogFormat.CONSOLE,
        )
    )

    actor = getattr(args, "actor", "") or ""
    with InvocationContext(command=args.command, actor=actor) as ctx:
        if getattr(args, "alert_id", None):
            ctx.bind(alert_id=args.alert_id)
        try:
            if manager is None:
                manager = build_alert_manager(settings)
            data, text = COMMANDS[args.command](manager, args)
        except AlertingError as exc:
            if args.format == "json":
                err.write(json.dumps(exc.to_dict(), default=str) + "\n")
            else:
                err.write(f"Error: {exc.message}\n")
            return exc.exit_code
        finally:
            logger.debug("Command %s finished in %.1fms", args.command, ctx.elapsed_ms)

    _emit(data, text, args.format, out)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
