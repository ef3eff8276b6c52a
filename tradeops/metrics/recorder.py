"""MetricsRecorder — buffered, at-least-once observation writer.

``record()`` only appends to an in-memory buffer.  The buffer is written to
the store as one batch when it reaches capacity or when the background timer
fires.  A batch that fails to write is pushed back to the front of the buffer
so the next flush retries it in the original order.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import structlog

from tradeops.core.types import Observation
from tradeops.storage.base import MetricStore
from tradeops.storage.exceptions import StorageError

logger = structlog.stdlib.get_logger()


class MetricsRecorder:
    """Buffers observations and flushes them to a :class:`MetricStore`.

    Usage::

        recorder = MetricsRecorder(store, buffer_size=1000, flush_interval_secs=5)
        await recorder.start()
        recorder.record("order", "fill", 1)
        ...
        await recorder.stop()  # final flush
    """

    def __init__(
        self,
        store: MetricStore,
        buffer_size: int = 1000,
        flush_interval_secs: float = 5.0,
    ) -> None:
        self._store = store
        self._buffer_size = buffer_size
        self._flush_interval_secs = flush_interval_secs
        self._buffer: list[Observation] = []
        # Guards the buffer only; never held across storage I/O.
        self._lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._flush_task: asyncio.Task[int] | None = None
        self._running = False
        self._flushed_total = 0
        self._failed_flushes = 0

    # ── Properties ──────────────────────────────────────────────

    @property
    def pending(self) -> int:
        """Observations buffered but not yet confirmed written."""
        with self._lock:
            return len(self._buffer)

    @property
    def flushed_total(self) -> int:
        return self._flushed_total

    @property
    def failed_flushes(self) -> int:
        return self._failed_flushes

    @property
    def running(self) -> bool:
        return self._running

    # ── Recording ───────────────────────────────────────────────

    def record(
        self,
        metric_type: str,
        metric_name: str,
        value: float,
        metadata: dict[str, Any] | None = None,
        now: float | None = None,
    ) -> Observation:
        """Buffer one observation. Never waits on storage."""
        obs = Observation(
            timestamp=time.time() if now is None else now,
            metric_type=metric_type,
            metric_name=metric_name,
            value=float(value),
            metadata=metadata,
        )
        with self._lock:
            self._buffer.append(obs)
            full = len(self._buffer) >= self._buffer_size
        if full:
            self._schedule_flush()
        return obs

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called off-loop; the timer or an explicit flush() drains it.
            return
        self._flush_task = loop.create_task(self.flush())

    # ── Flushing ────────────────────────────────────────────────

    async def flush(self) -> int:
        """Write everything currently buffered. Returns the number written.

        Storage failures are logged and the batch is requeued; 0 is returned.
        """
        async with self._flush_lock:
            with self._lock:
                batch, self._buffer = self._buffer, []
            if not batch:
                return 0

            try:
                written = await self._store.insert_observations(batch)
            except StorageError:
                self._requeue(batch)
                self._failed_flushes += 1
                logger.warning(
                    "metrics_flush_failed",
                    batch_size=len(batch),
                    pending=self.pending,
                    failed_flushes=self._failed_flushes,
                    exc_info=True,
                )
                return 0
            except BaseException:
                self._requeue(batch)
                raise

            self._flushed_total += written
            logger.debug("metrics_flushed", count=written, pending=self.pending)
            return written

    def _requeue(self, batch: list[Observation]) -> None:
        with self._lock:
            self._buffer[:0] = batch

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Start the periodic flush timer."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "metrics_recorder_started",
            buffer_size=self._buffer_size,
            flush_interval_secs=self._flush_interval_secs,
        )

    async def stop(self) -> None:
        """Stop the timer and make a final best-effort flush."""
        self._running = False
        for task in (self._task, self._flush_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._flush_task = None
        try:
            await self.flush()
        except Exception:
            logger.exception("metrics_final_flush_error", pending=self.pending)
        logger.info("metrics_recorder_stopped", flushed_total=self._flushed_total)

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._flush_interval_secs)
                await self.flush()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("metrics_flush_loop_error")
