"""Runs one collaborator call under a deadline and normalizes the outcome."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from ..errors import ErrorKind, classify_error, describe_error
from ..models.results import StageErr, StageOk, StageResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageExecutor:
    """Deadline enforcement and error normalization for stage calls.

    ``execute`` never raises for collaborator failures: every outcome is a
    ``StageOk`` or a ``StageErr``. Only caller cancellation propagates.

    A call that misses its deadline is abandoned, not cancelled: the task
    stays referenced until it ends and its result or exception is discarded.
    """

    def __init__(self):
        self._abandoned: set[asyncio.Future] = set()

    @property
    def abandoned_count(self) -> int:
        return len(self._abandoned)

    def _abandon(self, task: asyncio.Future, stage: str) -> None:
        self._abandoned.add(task)

        def _discard(done: asyncio.Future) -> None:
            self._abandoned.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.debug("Abandoned %s call finished with %r", stage, done.exception())

        task.add_done_callback(_discard)

    async def execute(
        self,
        stage: str,
        timeout_ms: int,
        operation: Callable[[], Awaitable[T]],
    ) -> StageResult[T]:
        started = time.perf_counter()
        try:
            task = asyncio.ensure_future(operation())
        except Exception as exc:
            result = StageErr(
                kind=classify_error(exc),
                message=describe_error(exc),
                stage=stage,
                duration_ms=self._elapsed(started),
            )
            self._log(stage, "error", started, result.kind)
            return result

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            self._log(stage, "cancelled", started, None)
            raise

        if not done:
            self._abandon(task, stage)
            result: StageResult[T] = StageErr(
                kind=ErrorKind.TIMEOUT,
                message=f"{stage} exceeded {timeout_ms} ms",
                stage=stage,
                duration_ms=self._elapsed(started),
            )
        elif task.cancelled():
            result = StageErr(
                kind=ErrorKind.UNKNOWN,
                message=f"{stage} call was cancelled",
                stage=stage,
                duration_ms=self._elapsed(started),
            )
        elif task.exception() is not None:
            exc = task.exception()
            result = StageErr(
                kind=classify_error(exc),
                message=describe_error(exc),
                stage=stage,
                duration_ms=self._elapsed(started),
            )
        else:
            result = StageOk(value=task.result(), duration_ms=self._elapsed(started), stage=stage)

        self._log(stage, "ok" if result.ok else "error", started, None if result.ok else result.kind)
        return result

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    def _log(self, stage: str, outcome: str, started: float, kind: ErrorKind | None) -> None:
        duration_ms = self._elapsed(started)
        logger.info(
            "stage %s %s in %d ms%s",
            stage, outcome, duration_ms, f" ({kind.value})" if kind else "",
            extra={
                "stage": stage,
                "outcome": outcome,
                "duration_ms": duration_ms,
                "error_kind": kind.value if kind else None,
            },
        )
