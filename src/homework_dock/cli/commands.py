# src/homework_dock/cli/commands.py

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..chat.messages import ChatMessage, MessageType
from ..core.errors import TaskNotFoundError
from ..core.state import AppState
from ..pipeline.artifacts import Artifact
from ..tasks.task_models import DEFAULT_SUBJECT, Task, TaskMeta, TaskSource

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /scan, ...)."""

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

    def handle(
        self,
        state: AppState,
        line: str,
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
        except Exception:
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def format_message(msg: ChatMessage) -> str:
    who = "student" if msg.from_student else (msg.agent_name or msg.sender.value)
    if msg.type == MessageType.TABLE and isinstance(msg.content, dict):
        lines = ["[table]"]
        text = str(msg.content.get("extractedText") or "").strip()
        if text:
            lines.append(f"  text: {text}")
        for i, q in enumerate(msg.content.get("questions") or [], start=1):
            if isinstance(q, dict):
                lines.append(f"  {i}. {q.get('text') or q.get('question') or '?'}")
        body = "\n".join(lines)
    elif isinstance(msg.content, (dict, list)):
        body = f"[{msg.type.value}] {json.dumps(msg.content, ensure_ascii=False)}"
    else:
        body = str(msg.content) if msg.type == MessageType.TEXT else f"[{msg.type.value}] {msg.content}"
    marker = " …" if msg.transient else ""
    return f"{who}: {body}{marker}"


def format_task(task: Task, *, active: bool = False) -> str:
    flag = "*" if active else " "
    done = "done" if task.done else "open"
    scan = task.scan_id or "-"
    return f"{flag} {task.id}  [{done}] {task.subject} / {task.what}  scan={scan}  ({_ts_local(task.created_at)})"


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    active = state.session.active_task
    persist = state.task_store.last_persist_mode
    return (
        "Status:\n"
        f"  user: {state.task_store.user_id}\n"
        f"  tasks: {len(state.task_store.list())}\n"
        f"  active task: {active.id if active else '-'}\n"
        f"  upload url: {getattr(state.settings, 'upload_url', '-')}\n"
        f"  last persist: {persist.value if persist else '-'}"
    )


def _run_capture(state: AppState, meta: TaskMeta, artifact: Artifact | None, emit: CommandEmitter | None) -> str:
    if emit is not None and artifact is not None:
        emit(f"Uploading {artifact.name} ({artifact.size} bytes)…")
    result = asyncio.run(state.session.create_task_and_open_chat(meta, artifact))
    if result.outcome is None:
        return f"Task {result.task.id} opened ({result.task.source.value})."
    line = f"Task {result.task.id}: scan {result.outcome.state.value}"
    if result.outcome.duplicate_of:
        line += f" (same worksheet as {result.outcome.duplicate_of})"
    return line + "."


def _artifact_from_args(args: list[str], usage: str) -> Artifact | str:
    if not args:
        return usage
    path = Path(args[0]).expanduser()
    if not path.is_file():
        return f"File not found: {path}"
    try:
        return Artifact.from_path(path)
    except OSError as e:
        return f"Cannot read {path}: {e}"


def cmd_scan(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    artifact = _artifact_from_args(args, "Usage: /scan <path> [subject]")
    if isinstance(artifact, str):
        return artifact
    subject = " ".join(args[1:]) or None
    return _run_capture(state, TaskMeta(subject=subject), artifact, emit)


def cmd_rescan(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    active = state.session.active_task
    if active is None:
        return "No active task. Use /open <task_id> first."
    artifact = _artifact_from_args(args, "Usage: /rescan <path>")
    if isinstance(artifact, str):
        return artifact
    return _run_capture(state, TaskMeta(task_id=active.id), artifact, emit)


def cmd_listen(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    meta = TaskMeta(
        subject=DEFAULT_SUBJECT,
        what="Audio-Aufgabe",
        description=" ".join(args) or "Diktierte Aufgabe",
        source=TaskSource.AUDIO,
    )
    return _run_capture(state, meta, None, emit)


def cmd_tasks(state: AppState, args: list[str]) -> str:
    tasks = state.task_store.list()
    if not tasks:
        return "No tasks yet. Use /scan <path> or /listen."
    active = state.session.active_task
    return "\n".join(format_task(t, active=active is not None and t.id == active.id) for t in tasks)


def cmd_open(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /open <task_id>"
    task = state.task_store.get(args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    state.session.open_and_focus(task.id, task)
    return f"Chat focused on {task.id}."


def cmd_chat(state: AppState, args: list[str]) -> str:
    task_id = args[0] if args else None
    if task_id is None and state.session.active_task is None:
        return "No active task."
    messages = state.session.messages(task_id)
    if not messages:
        return "(empty chat)"
    return "\n".join(format_message(m) for m in messages)


def cmd_done(state: AppState, args: list[str]) -> str:
    try:
        task = state.session.mark_done(args[0] if args else None)
    except TaskNotFoundError as e:
        return str(e)
    return f"Task {task.id} marked as done."


def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <task_id>"
    if state.session.delete_task(args[0]):
        return f"Task {args[0]} deleted."
    return f"Unknown task: {args[0]}"


def cmd_resume(state: AppState, args: list[str]) -> str:
    task = state.session.resume()
    if task is None:
        return "Nothing to resume."
    return f"Resumed {task.id} ({task.what})."


registry.register("help", cmd_help, "show this help", aliases=["h", "?"])
registry.register("status", cmd_status, "show session status")
registry.register("scan", cmd_scan, "scan a worksheet: /scan <path> [subject]")
registry.register("rescan", cmd_rescan, "rescan the active task: /rescan <path>")
registry.register("listen", cmd_listen, "start a task without a file: /listen [description]")
registry.register("tasks", cmd_tasks, "list tasks (newest first)", aliases=["ls"])
registry.register("open", cmd_open, "focus the chat of a task: /open <task_id>")
registry.register("chat", cmd_chat, "print a chat transcript: /chat [task_id]")
registry.register("done", cmd_done, "mark a task as done: /done [task_id]")
registry.register("delete", cmd_delete, "delete a task: /delete <task_id>")
registry.register("resume", cmd_resume, "re-open the last task from the progress record")
