"""Tests for the autosave scheduler: debounce, single flight and timeouts."""

from __future__ import annotations

import asyncio

import pytest
from loguru import logger

from extraedit.autosave import (
    AutosaveScheduler,
    ManualClock,
    ManualTimer,
    SaveOutcome,
)
from extraedit.exceptions import StorageUploadError
from extraedit.session import DocumentSession, SaveState


class RecordingSave:
    """Save function that records calls and can be held open."""

    def __init__(self, result: str | None = None) -> None:
        self.calls: list[bool] = []
        self.release = asyncio.Event()
        self.release.set()
        self.started = asyncio.Event()
        self.result = result
        self.error: Exception | None = None

    def hold(self) -> None:
        self.release.clear()

    async def __call__(self, manual: bool) -> str | None:
        self.calls.append(manual)
        self.started.set()
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def session(clock: ManualClock) -> DocumentSession:
    return DocumentSession("<p>start</p>", file_name="notes.html", clock=clock)


def make_scheduler(
    session: DocumentSession,
    save: RecordingSave,
    timer: ManualTimer,
    timeout: float = 30.0,
) -> AutosaveScheduler:
    return AutosaveScheduler(session, save, delay=30.0, timeout=timeout, timer=timer)


class TestDebounce:
    """The inactivity timer restarts on every edit."""

    @pytest.mark.asyncio
    async def test_fires_after_quiet_period(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        scheduler = make_scheduler(session, save, timer)

        session.set_content("<p>one</p>")
        assert scheduler.armed
        assert timer.advance(29) == 0

        session.set_content("<p>two</p>")
        assert timer.pending == 1
        assert timer.advance(29) == 0
        assert timer.advance(1) == 1

        result = await scheduler.flush()
        assert result is not None
        assert result.outcome is SaveOutcome.SAVED
        assert save.calls == [False]
        assert not session.dirty
        assert session.save_state is SaveState.SAVED

    @pytest.mark.asyncio
    async def test_no_edit_no_save(self, session: DocumentSession, timer: ManualTimer) -> None:
        save = RecordingSave()
        scheduler = make_scheduler(session, save, timer)
        assert not scheduler.armed
        assert timer.advance(60) == 0
        assert await scheduler.flush() is None
        assert save.calls == []

    @pytest.mark.asyncio
    async def test_manual_save_cancels_timer(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave(result="notes.html")
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>x</p>")

        result = await scheduler.request_save()
        assert result.outcome is SaveOutcome.SAVED
        assert result.file_name == "notes.html"
        assert not scheduler.armed
        assert timer.advance(30) == 0
        assert save.calls == [True]

    @pytest.mark.asyncio
    async def test_close_stops_watching(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        scheduler = make_scheduler(session, RecordingSave(), timer)
        session.set_content("<p>x</p>")
        scheduler.close()
        assert not scheduler.armed
        session.set_content("<p>y</p>")
        assert timer.pending == 0


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_clean_session_is_not_saved(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        scheduler = make_scheduler(session, save, timer)
        result = await scheduler.request_save()
        assert result.outcome is SaveOutcome.NOT_DIRTY
        assert result.ok
        assert save.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_request_is_dropped(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        save.hold()
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>x</p>")

        first = asyncio.create_task(scheduler.request_save())
        await save.started.wait()
        second = await scheduler.request_save()
        assert second.outcome is SaveOutcome.SKIPPED

        save.release.set()
        assert (await first).outcome is SaveOutcome.SAVED
        assert save.calls == [True]


class TestEditsDuringSave:
    """Edits made while a save is running are never lost."""

    @pytest.mark.asyncio
    async def test_edit_during_save_rearms(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        save.hold()
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>first</p>")
        timer.advance(30)
        await save.started.wait()

        session.set_content("<p>second</p>")
        save.release.set()
        result = await scheduler.flush()

        assert result is not None
        assert result.outcome is SaveOutcome.SAVED
        assert session.dirty
        assert session.save_state is SaveState.IDLE
        assert scheduler.armed

        timer.advance(30)
        await scheduler.flush()
        assert save.calls == [False, False]
        assert not session.dirty

    @pytest.mark.asyncio
    async def test_timer_firing_mid_save_is_retried(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        save.hold()
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>first</p>")
        manual = asyncio.create_task(scheduler.request_save())
        await save.started.wait()

        session.set_content("<p>second</p>")
        # Fires while the manual save is still running and is ignored
        timer.advance(30)
        assert not scheduler.armed

        save.release.set()
        await manual
        assert scheduler.armed


class TestFailures:
    """Failed and timed-out saves leave edits in memory."""

    @pytest.mark.asyncio
    async def test_timeout(self, session: DocumentSession, timer: ManualTimer) -> None:
        save = RecordingSave()
        save.hold()
        scheduler = make_scheduler(session, save, timer, timeout=0.05)
        session.set_content("<p>x</p>")

        result = await scheduler.request_save()
        assert result.outcome is SaveOutcome.FAILED
        assert result.error == "Save timed out after 0.05 seconds"
        assert session.save_state is SaveState.ERROR
        assert session.dirty
        assert session.html == "<p>x</p>"

    @pytest.mark.asyncio
    async def test_retry_after_timeout(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        save.hold()
        scheduler = make_scheduler(session, save, timer, timeout=0.05)
        session.set_content("<p>x</p>")
        await scheduler.request_save()

        save.release.set()
        result = await scheduler.request_save()
        assert result.outcome is SaveOutcome.SAVED
        assert session.save_state is SaveState.SAVED

    @pytest.mark.asyncio
    async def test_storage_failure(self, session: DocumentSession, timer: ManualTimer) -> None:
        save = RecordingSave()
        save.error = StorageUploadError("notes.html", "bucket unavailable")
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>x</p>")

        result = await scheduler.request_save()
        assert not result.ok
        assert "bucket unavailable" in (result.error or "")
        assert session.last_error == result.error
        assert session.dirty

    @pytest.mark.asyncio
    async def test_unexpected_error_releases_session(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        save.error = RuntimeError("bug")
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>x</p>")

        with pytest.raises(RuntimeError):
            await scheduler.request_save()
        assert not session.is_saving
        assert session.dirty

    @pytest.mark.asyncio
    async def test_crashed_autosave_is_logged(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        messages: list[str] = []
        handler_id = logger.add(messages.append, level="ERROR", format="{message}")
        save = RecordingSave()
        save.error = RuntimeError("bug")
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>x</p>")
        timer.advance(30)

        try:
            with pytest.raises(RuntimeError):
                await scheduler.flush()
            await asyncio.sleep(0)
        finally:
            logger.remove(handler_id)

        assert any("Autosave crashed: bug" in message for message in messages)
        assert session.dirty


class TestScenarioManualDuringAutosave:
    @pytest.mark.asyncio
    async def test_manual_request_is_a_no_op_while_autosaving(
        self, session: DocumentSession, timer: ManualTimer
    ) -> None:
        save = RecordingSave()
        save.hold()
        scheduler = make_scheduler(session, save, timer)
        session.set_content("<p>edit</p>")
        timer.advance(30)
        await save.started.wait()

        manual = await scheduler.request_save(manual=True)
        assert manual.outcome is SaveOutcome.SKIPPED

        save.release.set()
        result = await scheduler.flush()
        assert result is not None
        assert result.outcome is SaveOutcome.SAVED
        assert save.calls == [False]
