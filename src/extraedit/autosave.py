"""Debounced, single-flight, timeout-bounded autosave.

Every dirty-marking edit cancels and re-arms one inactivity timer. When
the timer fires, a save starts unless one is already in flight; a save
request made while another is in flight is dropped, not queued. A save
that outlives its budget is failed and the session is released from the
saving state with its in-memory edits intact.

Timers are injected so the delay can be driven deterministically:
AsyncioTimer for production, ManualTimer/ManualClock for tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from loguru import logger

from extraedit.config import get_settings
from extraedit.exceptions import EditorError, SaveTimeoutError
from extraedit.session import BaseSession
from extraedit.transport import TransportError

SaveFunc = Callable[[bool], Awaitable[str | None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    """Schedules a callback after a delay in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioTimer:
    """Timer backed by the running event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(eq=False)
class _ManualHandle:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualTimer:
    """Timer whose callbacks run only when ``advance`` passes their deadline."""

    clock: ManualClock = field(default_factory=ManualClock)
    _pending: list[_ManualHandle] = field(default_factory=list)

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualHandle(self.clock.now + delay, callback)
        self._pending.append(handle)
        return handle

    @property
    def pending(self) -> int:
        """Number of armed, uncancelled timers."""
        return sum(1 for h in self._pending if not h.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward and run due callbacks; return how many ran."""
        self.clock.advance(seconds)
        due = sorted(
            (h for h in self._pending if not h.cancelled and h.when <= self.clock.now),
            key=lambda h: h.when,
        )
        self._pending = [h for h in self._pending if h not in due and not h.cancelled]
        for handle in due:
            handle.callback()
        return len(due)


class SaveOutcome(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"  # Another save was in flight
    NOT_DIRTY = "not_dirty"
    FAILED = "failed"


@dataclass(frozen=True)
class SaveResult:
    """Outcome of one save request."""

    outcome: SaveOutcome
    error: str | None = None
    file_name: str | None = None  # New name when a format upgrade renamed the file

    @property
    def ok(self) -> bool:
        return self.outcome in (SaveOutcome.SAVED, SaveOutcome.NOT_DIRTY)


def _report_crash(task: asyncio.Task[SaveResult]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.opt(exception=error).error("Autosave crashed: {}", error)


class AutosaveScheduler:
    """Drives saves for one session.

    Args:
        session: The session to watch and save
        save_func: Coroutine function performing the save, called with the
            manual flag; returns the new file name when the save renamed
            the file
        delay: Inactivity delay before an autosave, in seconds
        timeout: Wall-clock budget of one save, in seconds
        timer: Timer implementation (defaults to the running event loop)
    """

    def __init__(
        self,
        session: BaseSession,
        save_func: SaveFunc,
        *,
        delay: float | None = None,
        timeout: float | None = None,
        timer: Timer | None = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.delay = delay if delay is not None else settings.autosave_delay_seconds
        self.timeout = timeout if timeout is not None else settings.save_timeout_seconds
        self._save_func = save_func
        self._timer: Timer = timer or AsyncioTimer()
        self._handle: TimerHandle | None = None
        self._task: asyncio.Task[SaveResult] | None = None
        self._closed = False
        self._unsubscribe = session.on_change(self._arm)

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def in_flight(self) -> asyncio.Task[SaveResult] | None:
        """The autosave task currently running, if any."""
        if self._task is not None and not self._task.done():
            return self._task
        return None

    def _arm(self) -> None:
        if self._closed:
            return
        self._cancel_timer()
        self._handle = self._timer.call_later(self.delay, self._fire)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self._closed or self.session.is_saving or not self.session.dirty:
            return
        logger.debug("Autosave timer fired after {}s of inactivity", self.delay)
        self._task = asyncio.get_running_loop().create_task(self.request_save(manual=False))
        self._task.add_done_callback(_report_crash)

    async def request_save(self, manual: bool = True) -> SaveResult:
        """Save now unless a save is in flight or there is nothing to save."""
        session = self.session
        if not session.is_saving and not session.dirty:
            return SaveResult(SaveOutcome.NOT_DIRTY)
        generation = session.begin_save()
        if generation is None:
            logger.debug("Save request dropped: another save is in flight (manual={})", manual)
            return SaveResult(SaveOutcome.SKIPPED)

        self._cancel_timer()
        try:
            file_name = await asyncio.wait_for(self._save_func(manual), timeout=self.timeout)
        except TimeoutError:
            error = SaveTimeoutError(self.timeout)
            logger.warning("{}", error)
            session.finish_save(generation, str(error))
            return SaveResult(SaveOutcome.FAILED, error=str(error))
        except (EditorError, TransportError) as e:
            logger.warning("Save failed: {}", e)
            session.finish_save(generation, str(e))
            return SaveResult(SaveOutcome.FAILED, error=str(e))
        else:
            session.finish_save(generation)
        finally:
            session.abort_save()
            edited_meanwhile = session.generation != generation
            if edited_meanwhile and session.dirty and not self._closed and self._handle is None:
                self._arm()

        return SaveResult(SaveOutcome.SAVED, file_name=file_name)

    async def flush(self) -> SaveResult | None:
        """Wait for an in-flight autosave to finish and return its result."""
        task = self.in_flight
        if task is None:
            return None
        return await task

    def close(self) -> None:
        """Stop watching the session; an in-flight save is left to finish."""
        self._closed = True
        self._cancel_timer()
        self._unsubscribe()
