"""
Upload session: admission loop, settlement and host notifications.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Optional

from admission import AdmissionQueue
from config import PROGRESS_INTERVAL, UPLOADS_LIMIT
from errors import TransferFailure
from items import Item
from log import logger
from progress import ProgressTracker, SizeRegistry
from throttle import Throttle

if TYPE_CHECKING:
    from transports.base import Transport


class SessionSummary:
    """What a drained session did. Passed to ``SessionHooks.session_finished``."""

    def __init__(self, items: int, failed: int, total_bytes: int, progress: int, elapsed: float):
        self.items = items
        self.failed = failed
        self.total_bytes = total_bytes
        self.progress = progress
        self.elapsed = elapsed

    @property
    def succeeded(self) -> int:
        return self.items - self.failed

    def __repr__(self) -> str:
        return (
            f"SessionSummary(items={self.items}, failed={self.failed}, "
            f"bytes={self.total_bytes}, progress={self.progress}%, elapsed={self.elapsed:.2f}s)"
        )


class SessionHooks:
    """Host callbacks. Override what you need; every hook defaults to a no-op."""

    def session_started(self) -> None:
        pass

    def session_finished(self, summary: SessionSummary) -> None:
        pass

    def session_cancelled(self) -> None:
        pass

    def report_error(self, failure: TransferFailure) -> None:
        pass

    def arm_leave_guard(self) -> None:
        pass

    def disarm_leave_guard(self) -> None:
        pass

    def progress_changed(self) -> None:
        pass


class UploadSession:
    """Runs uploads through a transport, at most ``limit`` at a time.

    All bookkeeping happens synchronously on the event loop thread; the only
    suspension point is the transport call inside each transfer task.
    """

    def __init__(
        self,
        transport: Transport,
        hooks: Optional[SessionHooks] = None,
        limit: int = UPLOADS_LIMIT,
        progress_interval: float = PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.hooks = hooks or SessionHooks()
        self.progress_interval = progress_interval
        self._clock = clock

        self._sizes = SizeRegistry()
        self._progress = ProgressTracker()
        self._queue = AdmissionQueue(limit)
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

        self._next_id = 0
        self._generation = 0
        self._active = False
        self._started_at = 0.0
        self._settled = 0
        self._failed = 0

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self._active

    @property
    def limit(self) -> int:
        return self._queue.limit

    @property
    def pending_count(self) -> int:
        return self._queue.pending_count()

    @property
    def in_flight_count(self) -> int:
        return self._queue.in_flight_count()

    # ── Public API ───────────────────────────────────────────────────────────

    def enqueue(self, item: Item) -> Item:
        """Queue an item and admit work if capacity allows.

        Must be called from a running event loop.
        """
        item.assign_id(self._next_id)
        self._next_id += 1
        self._sizes.record(item.id, item.size)
        self._queue.push(item)
        logger.debug(f"Enqueued #{item.id} {item.path} ({item.size} bytes)")

        if not self._active:
            self._begin_session()

        self._process_uploads()
        return item

    def cancel_pending(self, item_id: int) -> bool:
        """Withdraw an item that has not been admitted yet."""
        item = self._queue.remove_pending(item_id)
        if item is None:
            return False
        self._sizes.discard(item_id)
        self._progress.discard(item_id)
        logger.info(f"Withdrew pending upload #{item_id} {item.path}")
        self._notify("progress_changed")
        self._process_uploads()
        return True

    def reset_session(self) -> None:
        """Drop every item and counter. Running transfers are left to finish unobserved."""
        was_active = self._active
        dropped = self._queue.pending_count() + self._queue.in_flight_count()
        self._clear()
        if was_active:
            logger.warning(f"Upload session reset with {dropped} item(s) outstanding")
            self._notify("disarm_leave_guard")
            self._notify("session_cancelled")

    async def wait_idle(self) -> None:
        await self._idle.wait()

    # ── Queries ──────────────────────────────────────────────────────────────

    def aggregate_progress_percent(self) -> int:
        return self._progress.aggregate_progress(self._sizes)

    def total_items_in_flight_or_queued(self) -> int:
        return self._queue.in_flight_count() + self._queue.pending_count()

    def list_in_flight_items(self) -> list[dict]:
        """In-flight items ordered by progress, lowest first (stable for ties)."""
        files = []
        for item in self._queue.in_flight_items():
            files.append({
                "id": item.id,
                "name": item.name,
                "type": item.type,
                "is_dir": item.is_dir,
                "progress": self._progress.item_progress(item.id, self._sizes, item.is_dir),
            })
        return sorted(files, key=lambda f: f["progress"])

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def _begin_session(self) -> None:
        self._active = True
        self._idle.clear()
        self._started_at = self._clock()
        self._settled = 0
        self._failed = 0
        logger.info("Upload session started")
        self._notify("arm_leave_guard")
        self._notify("session_started")

    def _finish_session(self) -> None:
        summary = SessionSummary(
            items=self._settled,
            failed=self._failed,
            total_bytes=self._sizes.total_size(),
            progress=self.aggregate_progress_percent(),
            elapsed=self._clock() - self._started_at,
        )
        self._clear()
        logger.info(f"Upload session finished: {summary}")
        self._notify("disarm_leave_guard")
        self._notify("session_finished", summary)

    def _clear(self) -> None:
        self._queue.clear()
        self._sizes.clear()
        self._progress.clear()
        self._next_id = 0
        self._generation += 1
        self._active = False
        self._idle.set()

    def _notify(self, hook: str, *args) -> None:
        try:
            getattr(self.hooks, hook)(*args)
        except Exception as e:
            logger.error(f"Session hook {hook} failed: {e}")

    # ── Admission loop ───────────────────────────────────────────────────────

    def _process_uploads(self) -> None:
        if self._queue.is_empty():
            if self._active:
                self._finish_session()
            return

        while True:
            item = self._queue.admit_next()
            if item is None:
                break
            self._start_transfer(item)

    def _start_transfer(self, item: Item) -> None:
        generation = self._generation
        logger.debug(
            f"Admitted #{item.id} {item.path} "
            f"({self._queue.in_flight_count()}/{self._queue.limit} in flight)"
        )

        on_progress = Throttle(
            lambda loaded: self._set_progress(generation, item, loaded),
            self.progress_interval,
            self._clock,
        )
        task = asyncio.get_running_loop().create_task(
            self._run_transfer(item, generation, on_progress)
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def _run_transfer(self, item: Item, generation: int, on_progress: Throttle) -> None:
        failed = False
        try:
            await item.transfer(self.transport, on_progress)
        except Exception as e:
            failed = True
            failure = TransferFailure(item, e)
            logger.warning(str(failure))
            if generation == self._generation:
                self._notify("report_error", failure)
        finally:
            self._finish_upload(item, generation, failed)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Transfer task crashed: {exc!r}", exc_info=exc)

    def _set_progress(self, generation: int, item: Item, loaded: int) -> None:
        if generation != self._generation:
            return
        self._progress.set_progress(item.id, loaded, item.size)
        self._notify("progress_changed")

    def _finish_upload(self, item: Item, generation: int, failed: bool) -> None:
        if generation != self._generation:
            logger.debug(f"Ignoring settlement of #{item.id} {item.path} from a reset session")
            return

        self._progress.set_progress(item.id, item.size, item.size)
        self._queue.release(item.id)
        self._settled += 1
        if failed:
            self._failed += 1
        logger.debug(f"Settled #{item.id} {item.path} ({'failed' if failed else 'ok'})")
        self._notify("progress_changed")
        self._process_uploads()
