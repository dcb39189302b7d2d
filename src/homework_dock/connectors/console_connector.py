# src/homework_dock/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..chat.messages import ChatMessage, MessageFrom, MessageType, ScopeKey, make_message
from ..cli.commands import format_message
from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


class _TranscriptPrinter:
    """
    Message log subscriber: prints new or replaced messages of the active chat.

    The log only tells us "scope changed"; we diff the snapshot against what
    was already shown (by id and content) to print each version once.
    """

    def __init__(self, state: AppState) -> None:
        self._state = state
        self._shown: dict[str, object] = {}

    def __call__(self, scope: ScopeKey, snapshot: list[ChatMessage]) -> None:
        if scope != self._state.session.active_scope:
            return
        for msg in snapshot:
            if msg.from_student and msg.type == MessageType.TEXT:
                continue  # the learner just typed it
            if self._shown.get(msg.id) == msg.content:
                continue
            self._shown[msg.id] = msg.content
            _print_ts(format_message(msg))


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (user=%s).", state.task_store.user_id)
    _print_ts("[CONSOLE] Use /scan <path> or /listen to start a task, /help for commands, /exit to quit.\n")

    unsubscribe = state.message_log.subscribe(_TranscriptPrinter(state))

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    try:
        while True:
            try:
                user_input = input(">>> You: ").strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                cmd_response = command_registry.handle(state, user_input, emit=emit)
            except Exception:
                logger.exception("Command failed: %s", user_input)
                _print_ts("[ERROR] Command failed, see log for details.")
                continue

            if cmd_response is not None:
                print(cmd_response)
                continue

            scope = state.session.active_scope
            if scope is None:
                _print_ts("No active task. Use /scan <path>, /listen or /open <task_id>.")
                continue

            state.message_log.append(
                scope.mode,
                scope.task_id,
                [make_message(user_input, MessageFrom.STUDENT, MessageType.TEXT)],
            )
    finally:
        unsubscribe()
