"""Shared fakes for the upload queue tests."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from transports.base import Transport
from upload import SessionHooks


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Call:
    """One transport invocation, held open until the test settles it."""

    def __init__(self, kind: str, path: str, on_progress: Optional[Callable[[int], None]] = None):
        self.kind = kind
        self.path = path
        self.on_progress = on_progress
        self.future = asyncio.get_running_loop().create_future()

    def succeed(self) -> None:
        self.future.set_result(None)

    def fail(self, exc: Exception) -> None:
        self.future.set_exception(exc)


class FakeTransport(Transport):
    """Records calls; every transfer blocks until its Call is settled."""

    def __init__(self) -> None:
        self.calls: list[Call] = []

    async def upload_file(self, path, handle, overwrite, on_progress) -> None:
        call = Call("file", path, on_progress)
        self.calls.append(call)
        await call.future

    async def create_directory(self, path) -> None:
        call = Call("dir", path)
        self.calls.append(call)
        await call.future

    def call_for(self, path: str) -> Call:
        for call in self.calls:
            if call.path == path:
                return call
        raise AssertionError(f"no transport call for {path}")

    @property
    def open_calls(self) -> list[Call]:
        return [c for c in self.calls if not c.future.done()]


class AutoTransport(Transport):
    """Completes every transfer on the next loop tick; paths in ``failing`` raise."""

    def __init__(self, failing: tuple = ()):
        self.failing = set(failing)
        self.uploaded: list[str] = []
        self.created: list[str] = []
        self.closed = False

    async def upload_file(self, path, handle, overwrite, on_progress) -> None:
        await asyncio.sleep(0)
        if path in self.failing:
            raise RuntimeError(f"boom: {path}")
        self.uploaded.append(path)

    async def create_directory(self, path) -> None:
        await asyncio.sleep(0)
        if path in self.failing:
            raise RuntimeError(f"boom: {path}")
        self.created.append(path)

    async def close(self) -> None:
        self.closed = True


class RecordingHooks(SessionHooks):
    def __init__(self) -> None:
        self.events: list[str] = []
        self.errors: list = []
        self.summaries: list = []

    def session_started(self) -> None:
        self.events.append("started")

    def session_finished(self, summary) -> None:
        self.events.append("finished")
        self.summaries.append(summary)

    def session_cancelled(self) -> None:
        self.events.append("cancelled")

    def report_error(self, failure) -> None:
        self.errors.append(failure)

    def arm_leave_guard(self) -> None:
        self.events.append("arm")

    def disarm_leave_guard(self) -> None:
        self.events.append("disarm")


async def settle(ticks: int = 10) -> None:
    """Let pending tasks run up to their next real suspension point."""
    for _ in range(ticks):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hooks() -> RecordingHooks:
    return RecordingHooks()
