# src/taskminder/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.errors import InvalidFrequency, TaskminderError
from ..core.state import AppState
from ..reminders.escalation import TASK_REMINDER_WORKFLOW, describe_escalation
from ..tasks import task_api
from ..tasks.frequency import format_interval, is_valid_frequency
from ..workflows.run_models import ACTIVE_STATUSES

CommandEmitter = Callable[[str], None]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], str]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], str
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry shared by the console and Matrix connectors."""

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
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases or []:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
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
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 5

        try:
            if nparams >= 5:
                return cast(CommandHandler5, handler)(state, args, user_id, room_id, emit)
            return cast(CommandHandler4, handler)(state, args, user_id, room_id)
        except TaskminderError as e:
            # Store outages and similar are reported, not raised into the connector.
            logger.warning("/%s failed: %s", name, e)
            return f"/{name} failed: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_local(dt: datetime) -> str:
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def _days(n: int) -> str:
    return f"{n} day" if n == 1 else f"{n} days"


def _short_id(task_id: str) -> str:
    return task_id[:8]


def _split_frequency(args: list[str]) -> tuple[str, str] | None:
    """
    Split "/add" arguments into (frequency, name).

    The frequency comes first, optionally prefixed with "every":
        7 days Water plants
        every 2 weeks Clean the fridge
        30minutes Stretch
    """
    if not args:
        return None
    start = 1 if args[0].lower() == "every" else 0
    for width in (1, 2):
        end = start + width
        if end > len(args):
            break
        freq = " ".join(args[:end])
        if is_valid_frequency(freq):
            name = " ".join(args[end:]).strip()
            return (freq, name) if name else None
    return None


def _render_status_line(view: task_api.TaskStatusView) -> str:
    t = view.task
    every = format_interval(t.interval)
    if view.is_due:
        if view.days_overdue > 0:
            when = f"DUE ({_days(view.days_overdue)} overdue)"
        else:
            when = "DUE"
    else:
        when = f"next due {_fmt_local(view.next_due_at)}"
    done = f", last done {_fmt_local(t.last_completed)}" if t.last_completed else ""
    return f"[{_short_id(t.id)}] {t.name} (every {every}{done}) - {when}"


def cmd_help(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    return registry.build_help()


def cmd_status(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    views = task_api.list_task_status(state)
    due = sum(1 for v in views if v.is_due)
    active = state.engine.count_runs(workflow=TASK_REMINDER_WORKFLOW, statuses=list(ACTIVE_STATUSES))
    next_scan = state.scanner.seconds_until_next()
    return (
        "Status:\n"
        f"  Tasks: {len(views)} ({due} due)\n"
        f"  Active escalations: {active}\n"
        f"  Scan schedule: {state.scanner.cron} (next in {int(next_scan)}s)"
    )


def cmd_add(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """
    /add <frequency> <name>
    """
    parsed = _split_frequency(args)
    if parsed is None:
        return (
            "Usage: /add <frequency> <name>\n"
            "  e.g. /add 7 days Water plants\n"
            "       /add every 2 weeks Clean the fridge"
        )
    frequency, name = parsed
    try:
        task = task_api.add_task(state, name=name, frequency=frequency)
    except InvalidFrequency as e:
        return str(e)
    return f'Task "{task.name}" added (every {format_interval(task.interval)}). id={_short_id(task.id)}'


def cmd_list(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    views = task_api.list_task_status(state)
    if not views:
        return "No tasks yet. Use /add <frequency> <name>."
    lines = [f"Tasks ({len(views)}):"]
    lines.extend(f"  {_render_status_line(v)}" for v in views)
    return "\n".join(lines)


def cmd_due(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    views = task_api.list_due(state)
    if not views:
        return "Nothing is due."
    lines = [f"Due tasks ({len(views)}):"]
    lines.extend(f"  {_render_status_line(v)}" for v in views)
    return "\n".join(lines)


def cmd_done(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """
    /done <id|id prefix|name>
    """
    ref = " ".join(args).strip()
    if not ref:
        return "Usage: /done <task id or name>"
    task = task_api.complete_task(state, ref)
    if task is None:
        return f"Task not found: {ref}"
    return f'Task "{task.name}" marked as completed. Next due {_fmt_local(task.reference_time + task.interval)}.'


def cmd_delete(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    ref = " ".join(args).strip()
    if not ref:
        return "Usage: /delete <task id or name>"
    task = task_api.delete_task(state, ref)
    if task is None:
        return f"Task not found: {ref}"
    return f'Task "{task.name}" has been deleted.'


def cmd_clear(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """
    /clear confirm -> delete every task
    """
    if not args or args[0].lower() != "confirm":
        return "This deletes all tasks. Use /clear confirm to proceed."
    n = task_api.clear_tasks(state)
    return f"Removed {n} task(s)."


def cmd_scan(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    run_id = state.scanner.scan_once()
    if run_id is None:
        return "Scan done: no new reminders to send."
    return f"Scan done: started {run_id}."


def cmd_runs(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """
    /runs       -> active escalation runs
    /runs all   -> the most recent escalation runs, finished ones included
    """
    show_all = bool(args) and args[0].lower() == "all"
    statuses = None if show_all else list(ACTIVE_STATUSES)
    runs = state.run_store.list_runs(workflow=TASK_REMINDER_WORKFLOW, statuses=statuses, limit=20)
    if not runs:
        return "No escalation runs." if show_all else "No active escalation runs."

    lines = ["Escalation runs:"]
    for run in runs:
        view = describe_escalation(run, state.run_store.get_steps(run.id))
        task_name = str(run.params.get("task_name") or view.task_id)
        detail = view.status.value
        if view.resume_at is not None and not view.terminal:
            detail += f", resumes {_fmt_local(view.resume_at)}"
        if view.outcome:
            detail += f", {view.outcome}"
        if view.error:
            detail += f", error: {view.error}"
        lines.append(f"  {task_name} [{view.level.value}] {detail} ({run.id})")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show task counts and scanner schedule.")
registry.register("add", cmd_add, help_text="Add a recurring task: /add 7 days Water plants.")
registry.register("list", cmd_list, help_text="List all tasks with their due status.", aliases=["ls"])
registry.register("due", cmd_due, help_text="List tasks that are due now.")
registry.register("done", cmd_done, help_text="Mark a task completed: /done <id|name>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id|name>.", aliases=["rm"])
registry.register("clear", cmd_clear, help_text="Delete all tasks: /clear confirm.")
registry.register("scan", cmd_scan, help_text="Check for due tasks now instead of waiting.")
registry.register("runs", cmd_runs, help_text="Show escalation runs: /runs | /runs all.")
