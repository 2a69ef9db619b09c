# tests/test_commands.py

from __future__ import annotations

from datetime import UTC, datetime

from delegation_engine.cli.commands import CommandRegistry, registry
from delegation_engine.core.errors import InvalidStateError
from delegation_engine.tasks.task_models import RescheduleStatus


def test_command_registry_routes_and_aliases(state) -> None:
    reg = CommandRegistry()
    seen: list[tuple[list[str], str | None]] = []

    def handler(state, args, actor_id):
        seen.append((args, actor_id))
        return "ok"

    reg.register("ping", handler, "ping", aliases=["p"])

    assert reg.handle(state, "/ping a b", actor_id="u") == "ok"
    assert reg.handle(state, "/P", actor_id="v") == "ok"
    assert seen == [(["a", "b"], "u"), ([], "v")]
    assert "/ping - ping" in reg.build_help()


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_workflow_errors_become_replies(state) -> None:
    reg = CommandRegistry()

    def boom(state, args, actor_id):
        raise InvalidStateError("template 3 has ended")

    reg.register("boom", boom, "boom")
    assert reg.handle(state, "/boom") == "Error: template 3 has ended"


def test_approve_command_flow(state) -> None:
    due = datetime(2024, 11, 11, 17, 0, tzinfo=UTC)
    task_id = state.store.create_task({"title": "Report", "due_date": due})
    req = state.workflow.create_request(task_id, datetime(2024, 11, 14, 17, 0, tzinfo=UTC), "alice")

    listing = registry.handle(state, "/requests", actor_id="operator") or ""
    assert f"#{req.id} task={task_id} pending by=alice" in listing

    reply = registry.handle(state, f"/approve {req.id}", actor_id="operator") or ""
    assert reply.startswith(f"Request #{req.id} approved")
    assert state.store.get_request(req.id).status == RescheduleStatus.APPROVED

    again = registry.handle(state, f"/approve {req.id}", actor_id="operator") or ""
    assert again.startswith("Error:")
    assert registry.handle(state, "/requests", actor_id="operator") == "No reschedule requests."
    assert registry.handle(state, "/approve", actor_id="operator") == "Usage: /approve <request_id>"


def test_template_commands(state) -> None:
    template, task = state.workflow.create_template(
        title="Bins",
        kind="weekly",
        interval=1,
        start_date=datetime(2024, 11, 11, 9, 0, tzinfo=UTC),
        created_by="operator",
        day_of_week=1,
    )

    assert registry.handle(state, f"/pause {template.id}", actor_id="operator") == (
        f"Template #{template.id} is now Paused."
    )
    assert "no new instance" in (registry.handle(state, f"/advance {template.id}", actor_id="operator") or "")
    registry.handle(state, f"/resume {template.id}", actor_id="operator")

    advanced = registry.handle(state, f"/advance {template.id}", actor_id="operator") or ""
    assert "due 2024-11-18T09:00:00+00:00" in advanced

    shown = registry.handle(state, f"/template {template.id}", actor_id="operator") or ""
    assert shown.splitlines()[0] == f"#{template.id} Bins: Weekly (Monday) [Active]"
    assert f"task #{task.id} pending" in shown

    registry.handle(state, f"/end {template.id}", actor_id="operator")
    reply = registry.handle(state, f"/resume {template.id}", actor_id="operator") or ""
    assert reply == f"Error: template {template.id} has ended"


def test_sweep_and_overdue_commands(state, clock) -> None:
    due = datetime(2024, 11, 11, 17, 0, tzinfo=UTC)
    task_id = state.store.create_task({"title": "Report", "due_date": due})

    assert registry.handle(state, "/sweep", actor_id="operator") == "Nothing expired."

    req = state.workflow.create_request(task_id, datetime(2024, 11, 14, 17, 0, tzinfo=UTC), "alice")
    clock.advance(days=7)
    assert registry.handle(state, "/sweep", actor_id="operator") == f"Auto-approved: {req.id}"

    assert registry.handle(state, "/overdue 999", actor_id="operator") == "Error: task 999 not found"
    reply = registry.handle(state, f"/overdue {task_id}", actor_id="operator") or ""
    assert reply.startswith(f"Task #{task_id}: ")
