"""Client-side polling until a stage leaves ``processing``.

The watch budget is advisory. Running out of it yields a ``TimeoutAdvisory``
value and never changes the stage's persisted status.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol
from uuid import UUID

from optihub.config.settings import settings
from optihub.models.recording import StageStatus

from .registry import RecordingStatus, Stage

logger = logging.getLogger("optihub.pipeline")


class StatusReader(Protocol):
    async def get_status(self, recording_id: UUID) -> RecordingStatus:
        ...


@dataclass(frozen=True)
class TimeoutAdvisory:
    recording_id: UUID
    stage: Stage
    waited_seconds: float
    message: str = (
        "Still processing. The job keeps running in the background; "
        "check back later or force a retry if it stays stuck."
    )


@dataclass(frozen=True)
class WatchResult:
    stage: Stage
    status: Optional[StageStatus]
    advisory: Optional[TimeoutAdvisory] = None
    cancelled: bool = False
    polls: int = 0

    @property
    def timed_out(self) -> bool:
        return self.advisory is not None

    @property
    def completed(self) -> bool:
        return self.status is StageStatus.COMPLETED


class WatchContext:
    """Polling state for one recording, passed explicitly to each watch."""

    def __init__(
        self,
        recording_id: UUID,
        *,
        interval: float | None = None,
        budget: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.recording_id = recording_id
        self.interval = (
            settings.pipeline.poll_interval_seconds if interval is None else interval
        )
        self.budget = settings.pipeline.poll_budget_seconds if budget is None else budget
        self._sleep = sleep
        self._clock = clock
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop polling; the server-side job is unaffected."""

        self._cancelled = True

    async def wait_for_stage(self, reader: StatusReader, stage: Stage) -> WatchResult:
        started = self._clock()
        polls = 0
        status: StageStatus | None = None

        while True:
            if self._cancelled:
                return WatchResult(stage=stage, status=status, cancelled=True, polls=polls)

            snapshot = await reader.get_status(self.recording_id)
            polls += 1
            status = snapshot.status_of(stage)
            if status is not StageStatus.PROCESSING:
                return WatchResult(stage=stage, status=status, polls=polls)

            elapsed = self._clock() - started
            if elapsed >= self.budget:
                logger.info(
                    "Watch budget exhausted recording=%s stage=%s after %.1fs",
                    self.recording_id,
                    stage.value,
                    elapsed,
                )
                return WatchResult(
                    stage=stage,
                    status=status,
                    advisory=TimeoutAdvisory(
                        recording_id=self.recording_id,
                        stage=stage,
                        waited_seconds=elapsed,
                    ),
                    polls=polls,
                )

            await self._sleep(min(self.interval, self.budget - elapsed))


async def wait_for_stage(
    reader: StatusReader,
    recording_id: UUID,
    stage: Stage,
    *,
    context: WatchContext | None = None,
    **options: Any,
) -> WatchResult:
    """Poll ``reader`` until ``stage`` leaves ``processing`` or the budget runs out."""

    ctx = context or WatchContext(recording_id, **options)
    return await ctx.wait_for_stage(reader, stage)


__all__ = [
    "StatusReader",
    "TimeoutAdvisory",
    "WatchContext",
    "WatchResult",
    "wait_for_stage",
]
