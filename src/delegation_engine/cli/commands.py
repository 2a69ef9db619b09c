# src/delegation_engine/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.errors import DelegationError
from ..core.state import AppState
from ..tasks.recurrence import template_status_label
from ..tasks.sweeper import run_sweep_once
from ..tasks.task_api import describe_template, task_overdue_summary
from ..tasks.task_models import RescheduleStatus

CommandHandler = Callable[[AppState, list[str], str | None], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the operator console (/help, /sweep, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, actor_id: str | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Workflow errors are turned into a one-line reply.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return handler(state, args, actor_id)
        except DelegationError as exc:
            logger.debug("/%s failed: %s", name, exc)
            return f"Error: {exc}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _int_arg(args: list[str]) -> int | None:
    if not args:
        return None
    try:
        return int(args[0])
    except ValueError:
        return None


def cmd_help(state: AppState, args: list[str], actor_id: str | None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], actor_id: str | None) -> str:
    settings = state.settings
    return (
        "Status:\n"
        f"  Database: {getattr(settings, 'db_path', '?')}\n"
        f"  Reschedule expiry: {getattr(settings, 'reschedule_expiry_days', '?')} days\n"
        f"  Sweep interval: {getattr(settings, 'sweep_interval_seconds', '?')}s\n"
        f"  Pending reschedule requests: {state.workflow.pending_count()}"
    )


def cmd_sweep(state: AppState, args: list[str], actor_id: str | None) -> str:
    report = run_sweep_once(state.workflow)
    if report is None:
        return "Sweep failed; see log."
    if not report.total:
        return "Nothing expired."
    lines = [f"Auto-approved: {', '.join(map(str, report.approved)) or '-'}"]
    if report.skipped:
        lines.append(f"Already resolved: {', '.join(map(str, report.skipped))}")
    for request_id, err in report.failed.items():
        lines.append(f"Failed #{request_id}: {err}")
    return "\n".join(lines)


def cmd_requests(state: AppState, args: list[str], actor_id: str | None) -> str:
    """
    /requests            -> pending requests
    /requests all        -> every request
    /requests approved   -> by status
    """
    status: RescheduleStatus | None = RescheduleStatus.PENDING
    if args:
        arg = args[0].lower()
        if arg == "all":
            status = None
        else:
            try:
                status = RescheduleStatus(arg)
            except ValueError:
                return "Usage: /requests [all|pending|approved|rejected]"

    items = state.workflow.list_requests(status=status)
    if not items:
        return "No reschedule requests."
    lines = []
    for r in items:
        lines.append(
            f"#{r.id} task={r.task_id} {r.status.value} by={r.requested_by} "
            f"{r.current_due_date.isoformat() if r.current_due_date else '-'} -> {r.requested_due_date.isoformat()} "
            f"(expires {r.expires_at.isoformat()})"
        )
    return "\n".join(lines)


def cmd_approve(state: AppState, args: list[str], actor_id: str | None) -> str:
    request_id = _int_arg(args)
    if request_id is None:
        return "Usage: /approve <request_id>"
    r = state.workflow.approve_request(request_id, actor_id)
    return f"Request #{r.id} approved; task {r.task_id} now due {r.requested_due_date.isoformat()}."


def cmd_reject(state: AppState, args: list[str], actor_id: str | None) -> str:
    request_id = _int_arg(args)
    if request_id is None:
        return "Usage: /reject <request_id> [reason]"
    reason = " ".join(args[1:]) or None
    r = state.workflow.reject_request(request_id, actor_id, reason)
    return f"Request #{r.id} rejected."


def _template_cmd(action: str) -> CommandHandler:
    def handler(state: AppState, args: list[str], actor_id: str | None) -> str:
        template_id = _int_arg(args)
        if template_id is None:
            return f"Usage: /{action} <template_id>"
        op = {
            "pause": state.workflow.pause_template,
            "resume": state.workflow.resume_template,
            "end": state.workflow.end_template,
        }[action]
        t = op(template_id, actor_id)
        return f"Template #{t.id} is now {template_status_label(t)}."

    return handler


def cmd_advance(state: AppState, args: list[str], actor_id: str | None) -> str:
    template_id = _int_arg(args)
    if template_id is None:
        return "Usage: /advance <template_id>"
    task = state.workflow.advance_template(template_id)
    if task is None:
        return f"Template #{template_id}: no new instance generated."
    due = task.due_date.isoformat() if task.due_date else "-"
    return f"Template #{template_id}: created task #{task.id} due {due}."


def cmd_template(state: AppState, args: list[str], actor_id: str | None) -> str:
    template_id = _int_arg(args)
    if template_id is None:
        return "Usage: /template <template_id>"
    lines = [describe_template(state, template_id)]
    for t in state.workflow.template_history(template_id):
        due = t.due_date.isoformat() if t.due_date else "-"
        lines.append(f"  task #{t.id} {t.status.value} due {due}")
    return "\n".join(lines)


def cmd_overdue(state: AppState, args: list[str], actor_id: str | None) -> str:
    task_id = _int_arg(args)
    if task_id is None:
        return "Usage: /overdue <task_id>"
    _, label = task_overdue_summary(state, task_id)
    return f"Task #{task_id}: {label or 'not overdue'}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show settings and pending request count.")
registry.register("sweep", cmd_sweep, help_text="Auto-approve expired reschedule requests now.")
registry.register(
    "requests", cmd_requests, help_text="List reschedule requests: /requests [all|pending|approved|rejected]."
)
registry.register("approve", cmd_approve, help_text="Approve a reschedule request: /approve <id>.")
registry.register("reject", cmd_reject, help_text="Reject a reschedule request: /reject <id> [reason].")
registry.register("pause", _template_cmd("pause"), help_text="Pause a recurring template: /pause <id>.")
registry.register("resume", _template_cmd("resume"), help_text="Resume a paused template: /resume <id>.")
registry.register("end", _template_cmd("end"), help_text="End a recurring series for good: /end <id>.")
registry.register("advance", cmd_advance, help_text="Generate the next instance: /advance <template_id>.")
registry.register("template", cmd_template, help_text="Show a template and its instances: /template <id>.")
registry.register("overdue", cmd_overdue, help_text="Show overdue status of a task: /overdue <task_id>.")
