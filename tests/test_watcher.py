"""Polling completion watcher."""

from __future__ import annotations

import asyncio
from uuid import uuid4

from optihub.models.recording import StageStatus
from optihub.pipeline import Stage, WatchContext, wait_for_stage
from optihub.pipeline.registry import RecordingStatus, StageSnapshot


def _status(recording_id, stage, value):
    stages = {
        s: StageSnapshot(stage=s, status=StageStatus.COMPLETED, updated_at=None, error=None, orphaned=False)
        for s in Stage
    }
    stages[stage] = StageSnapshot(stage=stage, status=value, updated_at=None, error=None, orphaned=False)
    return RecordingStatus(recording_id=recording_id, stages=stages)


class ScriptedReader:
    def __init__(self, recording_id, stage, *statuses):
        self.recording_id = recording_id
        self.stage = stage
        self.statuses = list(statuses)
        self.reads = 0

    async def get_status(self, recording_id):
        self.reads += 1
        value = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return _status(recording_id, self.stage, value)


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


def test_returns_as_soon_as_stage_leaves_processing():
    recording_id = uuid4()
    fake = FakeTime()
    reader = ScriptedReader(
        recording_id,
        Stage.PROCESS,
        StageStatus.PROCESSING,
        StageStatus.PROCESSING,
        StageStatus.COMPLETED,
    )
    ctx = WatchContext(recording_id, interval=1, budget=60, sleep=fake.sleep, clock=fake.clock)

    result = asyncio.run(ctx.wait_for_stage(reader, Stage.PROCESS))

    assert result.completed
    assert not result.timed_out
    assert result.polls == 3
    assert fake.sleeps == [1, 1]


def test_failed_stage_is_returned_without_advisory():
    recording_id = uuid4()
    fake = FakeTime()
    reader = ScriptedReader(recording_id, Stage.ANALYZE, StageStatus.FAILED)

    result = asyncio.run(
        wait_for_stage(reader, recording_id, Stage.ANALYZE, sleep=fake.sleep, clock=fake.clock)
    )

    assert result.status is StageStatus.FAILED
    assert result.advisory is None
    assert fake.sleeps == []


def test_budget_exhaustion_returns_advisory_and_leaves_status(env):
    recording = env.create_recording()
    env.run(env.services.registry.begin_stage(recording.id, Stage.TRANSCRIBE))
    fake = FakeTime()

    result = env.run(
        wait_for_stage(
            env.services.registry,
            recording.id,
            Stage.TRANSCRIBE,
            interval=2,
            budget=5,
            sleep=fake.sleep,
            clock=fake.clock,
        )
    )

    assert result.timed_out
    assert result.advisory.waited_seconds >= 5
    assert result.status is StageStatus.PROCESSING
    assert fake.sleeps == [2, 2, 1]

    status = env.run(env.services.registry.get_status(recording.id))
    assert status.transcription_status is StageStatus.PROCESSING


def test_cancel_stops_polling():
    recording_id = uuid4()
    fake = FakeTime()
    ctx = WatchContext(recording_id, interval=1, budget=60, sleep=fake.sleep, clock=fake.clock)

    class CancellingReader(ScriptedReader):
        async def get_status(self, recording_id):
            snapshot = await super().get_status(recording_id)
            ctx.cancel()
            return snapshot

    reader = CancellingReader(recording_id, Stage.TRANSCRIBE, StageStatus.PROCESSING)

    result = asyncio.run(ctx.wait_for_stage(reader, Stage.TRANSCRIBE))

    assert result.cancelled
    assert result.polls == 1
    assert reader.reads == 1


def test_contexts_poll_independently():
    fake = FakeTime()
    first, second = uuid4(), uuid4()
    ctx_a = WatchContext(first, interval=1, budget=60, sleep=fake.sleep, clock=fake.clock)
    ctx_b = WatchContext(second, interval=1, budget=60, sleep=fake.sleep, clock=fake.clock)

    ctx_a.cancel()

    assert ctx_a.cancelled
    assert not ctx_b.cancelled


def test_zero_budget_polls_once_then_advises():
    recording_id = uuid4()
    fake = FakeTime()
    reader = ScriptedReader(recording_id, Stage.TRANSCRIBE, StageStatus.PROCESSING)
    ctx = WatchContext(recording_id, interval=1, budget=0, sleep=fake.sleep, clock=fake.clock)

    assert ctx.budget == 0

    result = asyncio.run(ctx.wait_for_stage(reader, Stage.TRANSCRIBE))

    assert result.timed_out
    assert result.polls == 1
    assert fake.sleeps == []
