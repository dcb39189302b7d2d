# tests/test_session.py

from __future__ import annotations

import pytest

from homework_dock.chat.messages import MessageFrom, MessageType, make_message
from homework_dock.cli.bootstrap import create_initial_state
from homework_dock.core.errors import TaskNotFoundError, UploadError
from homework_dock.core.session import TEXT_LISTENING
from homework_dock.pipeline.artifacts import Artifact
from homework_dock.pipeline.pipeline import PipelineState
from homework_dock.tasks.progress import ProgressStep
from homework_dock.tasks.task_models import TaskMeta, TaskSource
from homework_dock.tasks.task_store import PersistMode, tasks_key_for_user

from .fakes import FakeUploader, ListLimitKV, image_artifact, scan_payload


@pytest.mark.asyncio
async def test_image_capture_creates_task_and_renders_results(state, uploader) -> None:
    artifact = image_artifact("blatt.png")

    result = await state.session.create_task_and_open_chat(None, artifact)

    task = result.task
    assert result.outcome is not None
    assert result.outcome.state == PipelineState.COMPLETED
    assert task.source == TaskSource.IMAGE
    assert task.what == "Bild"
    assert task.has_image is True
    assert task.file_name == "blatt.png"
    assert task.file_type == "image/png"
    assert task.scan_id == "scan-1"
    assert task.user_id == "u1"
    assert len(uploader.calls) == 1

    messages = state.session.messages()
    assert [m.type for m in messages] == [
        MessageType.IMAGE,
        MessageType.TEXT,
        MessageType.TABLE,
        MessageType.TIP,
    ]
    seed = messages[0]
    assert seed == result.seed
    assert seed.sender == MessageFrom.STUDENT
    assert seed.content == {"fileName": "blatt.png", "fileType": "image/png", "fileSize": artifact.size}

    # The pipeline's task update reaches the bound chat without a re-open.
    assert state.session.active_task.scan_id == "scan-1"
    assert state.session.active_scope == ("homework", task.id)


@pytest.mark.asyncio
async def test_capture_without_artifact_opens_listening_chat(state, uploader) -> None:
    result = await state.session.create_task_and_open_chat()

    assert result.outcome is None
    assert result.task.source == TaskSource.AUDIO
    assert result.task.what == "Audio-Aufgabe"
    assert uploader.calls == []

    [msg] = state.session.messages()
    assert msg.sender == MessageFrom.AGENT
    assert msg.content == TEXT_LISTENING
    assert msg.agent_name == "Kibundo"

    record = state.progress.read()
    assert record.step == ProgressStep.DOING
    assert record.task_id == result.task.id


@pytest.mark.asyncio
async def test_document_capture_uses_file_defaults(state) -> None:
    doc = Artifact(name="blatt.pdf", content=b"%PDF-1.4", content_type="application/pdf")

    result = await state.session.create_task_and_open_chat(TaskMeta(subject="Deutsch"), doc)

    assert result.task.source == TaskSource.FILE
    assert result.task.what == "Datei"
    assert result.task.has_image is False
    assert result.seed.type == MessageType.TEXT
    assert result.seed.sender == MessageFrom.STUDENT


@pytest.mark.asyncio
async def test_task_is_persisted_before_upload_finishes(state, kv) -> None:
    result = await state.session.create_task_and_open_chat()
    stored = kv.load(tasks_key_for_user("u1"))
    assert [t["id"] for t in stored] == [result.task.id]


@pytest.mark.asyncio
async def test_rescan_same_task_id_does_not_duplicate_task(state, settings, kv) -> None:
    uploader = FakeUploader(scan_payload("scan-1"), scan_payload("scan-2", subject="Deutsch"))
    app = create_initial_state(settings=settings, kv=kv, uploader=uploader)

    first = await app.session.create_task_and_open_chat(None, image_artifact())
    again = await app.session.create_task_and_open_chat(TaskMeta(task_id=first.task.id), image_artifact(split=True))

    assert again.task.id == first.task.id
    assert len(app.task_store.list()) == 1
    assert again.task.scan_id == "scan-2"
    assert again.task.created_at == first.task.created_at
    assert again.task.source == TaskSource.IMAGE

    messages = app.session.messages()
    student = [m for m in messages if m.from_student]
    agent = [m for m in messages if not m.from_student]
    assert len(student) == 2
    assert [m.type for m in agent] == [MessageType.TEXT, MessageType.TABLE, MessageType.TIP]


@pytest.mark.asyncio
async def test_failed_upload_keeps_task_and_shows_error(settings, kv) -> None:
    app = create_initial_state(settings=settings, kv=kv, uploader=FakeUploader(UploadError("Bad Gateway", status=502)))

    result = await app.session.create_task_and_open_chat(None, image_artifact())

    assert result.outcome.state == PipelineState.FAILED
    assert app.task_store.get(result.task.id) is not None
    assert result.task.scan_id is None
    messages = app.session.messages()
    assert [m.type for m in messages] == [MessageType.IMAGE, MessageType.ERROR]
    assert messages[1].content == "Analyse fehlgeschlagen (502). Bad Gateway"


@pytest.mark.asyncio
async def test_reopening_active_task_never_resets_transcript(state) -> None:
    result = await state.session.create_task_and_open_chat(None, image_artifact())
    before = state.session.messages()

    state.session.open_and_focus(result.task.id, initial_messages=[make_message("seed")])

    assert state.session.messages() == before


def test_open_and_focus_seeds_only_empty_scope(state) -> None:
    a = state.task_store.create()
    b = state.task_store.create()
    seed = make_message("Hallo")

    state.session.open_and_focus(a.id, initial_messages=[seed])
    assert state.session.messages() == [seed]

    state.session.open_and_focus(b.id)
    state.session.open_and_focus(a.id, initial_messages=[make_message("again")])
    assert state.session.messages(a.id) == [seed]
    assert state.session.active_task == a


@pytest.mark.asyncio
async def test_mark_done_records_feedback_step(state) -> None:
    result = await state.session.create_task_and_open_chat()

    done = state.session.mark_done()

    assert done.done is True
    assert state.session.active_task.done is True
    assert state.progress.read().step == ProgressStep.FEEDBACK


def test_mark_done_without_active_task_raises(state) -> None:
    with pytest.raises(TaskNotFoundError):
        state.session.mark_done()


@pytest.mark.asyncio
async def test_resume_after_restart(state, settings, kv, uploader) -> None:
    result = await state.session.create_task_and_open_chat(None, image_artifact())

    restarted = create_initial_state(settings=settings, kv=kv, uploader=uploader)
    task = restarted.session.resume()

    assert task is not None
    assert task.id == result.task.id
    assert task.scan_id == "scan-1"
    assert restarted.session.active_task.id == task.id
    assert [m.type for m in restarted.session.messages()] == [
        MessageType.IMAGE,
        MessageType.TEXT,
        MessageType.TABLE,
        MessageType.TIP,
    ]


def test_resume_with_nothing_recorded(state) -> None:
    assert state.session.resume() is None


@pytest.mark.asyncio
async def test_delete_task_clears_chat_and_progress(state, kv) -> None:
    result = await state.session.create_task_and_open_chat(None, image_artifact())

    assert state.session.delete_task(result.task.id) is True

    assert state.task_store.get(result.task.id) is None
    assert state.session.active_task is None
    assert state.session.active_scope is None
    assert state.progress.read() is None
    assert state.message_log.get("homework", result.task.id) == []
    assert kv.keys("homework.chat.v1") == []
    assert state.session.delete_task(result.task.id) is False


@pytest.mark.asyncio
async def test_trimmed_tasks_lose_their_chats(settings) -> None:
    settings.max_persisted_tasks = 2
    kv = ListLimitKV(limit=2)
    app = create_initial_state(settings=settings, kv=kv, uploader=FakeUploader())

    oldest = await app.session.create_task_and_open_chat()
    await app.session.create_task_and_open_chat()
    newest = await app.session.create_task_and_open_chat()

    assert app.task_store.last_persist_mode == PersistMode.TRIMMED
    assert app.task_store.get(oldest.task.id) is None
    assert len(app.task_store.list()) == 2
    assert app.message_log.get("homework", oldest.task.id) == []
    assert not any(oldest.task.id in key for key in kv.keys("homework.chat.v1"))
    assert app.session.active_task.id == newest.task.id
    assert app.progress.read().task_id == newest.task.id


@pytest.mark.asyncio
async def test_pruning_the_active_task_resets_focus_and_progress(settings) -> None:
    settings.max_persisted_tasks = 1
    kv = ListLimitKV(limit=1)
    app = create_initial_state(settings=settings, kv=kv, uploader=FakeUploader())
    first = await app.session.create_task_and_open_chat()
    assert app.progress.read().task_id == first.task.id

    # A second task pushes the first out of storage while it is still the focused chat.
    app.task_store.create(TaskMeta(what="Lesen"))
    assert app.task_store.persist() == PersistMode.TRIMMED

    assert app.session.active_task is None
    assert app.session.active_scope is None
    assert app.progress.read() is None
    assert app.session.messages(first.task.id) == []
