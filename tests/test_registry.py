"""Stage gating, transitions and orphan detection."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from optihub.models.base import utcnow
from optihub.models.recording import Recording, StageStatus
from optihub.pipeline import (
    ErrorClass,
    InvalidTransition,
    RecordingNotFound,
    Stage,
    StageNotReady,
    StaleRunError,
)
from optihub.pipeline.registry import complete_run, is_orphaned, transition


def test_new_recording_has_all_stages_pending(env):
    recording = env.create_recording()

    status = env.run(env.services.registry.get_status(recording.id))

    assert status.transcription_status is StageStatus.PENDING
    assert status.processing_status is StageStatus.PENDING
    assert status.analysis_status is StageStatus.PENDING


@pytest.mark.parametrize("stage", [Stage.PROCESS, Stage.ANALYZE])
def test_downstream_stage_rejected_until_upstream_completes(env, stage):
    recording = env.create_recording()

    with pytest.raises(StageNotReady):
        env.run(env.services.executor.invoke_stage(recording.id, stage))

    status = env.run(env.services.registry.get_status(recording.id))
    assert status.status_of(stage) is StageStatus.PENDING
    assert env.inference.calls == []


def test_transcribe_requires_audio(env):
    recording = env.create_recording()
    env.update_recording(recording.id, audio_path=None)

    with pytest.raises(StageNotReady):
        env.run(env.services.registry.begin_stage(recording.id, Stage.TRANSCRIBE))


def test_begin_stage_on_unknown_recording(env):
    with pytest.raises(RecordingNotFound):
        env.run(env.services.registry.begin_stage(uuid4(), Stage.TRANSCRIBE))


def test_transition_rejects_pending_to_completed():
    recording = Recording(id=uuid4(), transcription_status=StageStatus.PENDING)

    with pytest.raises(InvalidTransition):
        transition(recording, Stage.TRANSCRIBE, StageStatus.COMPLETED)


def test_failed_transition_records_error_class():
    recording = Recording(id=uuid4(), processing_status=StageStatus.PROCESSING)

    transition(
        recording,
        Stage.PROCESS,
        StageStatus.FAILED,
        error_class=ErrorClass.TRANSIENT,
        message="upstream down",
    )

    assert recording.processing_status is StageStatus.FAILED
    assert recording.processing_error == {
        "error_class": "transient",
        "message": "upstream down",
    }


def test_processing_beyond_threshold_is_orphaned():
    now = utcnow()
    recording = Recording(
        id=uuid4(),
        transcription_status=StageStatus.PROCESSING,
        transcription_updated_at=now - timedelta(minutes=15),
    )

    assert is_orphaned(recording, Stage.TRANSCRIBE, 600, now)
    assert not is_orphaned(recording, Stage.TRANSCRIBE, 1800, now)
    assert not is_orphaned(recording, Stage.PROCESS, 600, now)


def test_force_reset_orphaned_stage(env):
    recording = env.create_recording()
    env.update_recording(
        recording.id,
        transcription_status=StageStatus.PROCESSING,
        transcription_updated_at=utcnow() - timedelta(hours=1),
    )

    status = env.run(env.services.registry.get_status(recording.id))
    assert status.stages[Stage.TRANSCRIBE].orphaned

    reset = env.run(env.services.registry.force_reset(recording.id, Stage.TRANSCRIBE))
    assert reset.transcription_status is StageStatus.PENDING


def test_force_reset_refuses_active_stage(env):
    recording = env.create_recording()
    env.run(env.services.registry.begin_stage(recording.id, Stage.TRANSCRIBE))

    with pytest.raises(InvalidTransition):
        env.run(env.services.registry.force_reset(recording.id, Stage.TRANSCRIBE))


def test_force_reset_refuses_completed_stage(env):
    recording = env.create_recording()
    env.complete_stages(recording.id, Stage.TRANSCRIBE)

    with pytest.raises(InvalidTransition):
        env.run(env.services.registry.force_reset(recording.id, Stage.TRANSCRIBE))


def test_mark_failed_ignores_stage_not_processing(env):
    recording = env.create_recording()

    env.run(
        env.services.registry.mark_failed(
            recording.id, Stage.TRANSCRIBE, ErrorClass.PERMANENT, "late failure"
        )
    )

    status = env.run(env.services.registry.get_status(recording.id))
    assert status.transcription_status is StageStatus.PENDING


def test_begin_on_processing_stage_issues_new_run(env):
    recording = env.create_recording()
    registry = env.services.registry

    first = env.run(registry.begin_stage(recording.id, Stage.TRANSCRIBE))
    second = env.run(registry.begin_stage(recording.id, Stage.TRANSCRIBE))

    assert second.transcription_status is StageStatus.PROCESSING
    assert first.run_id_of(Stage.TRANSCRIBE) is not None
    assert second.run_id_of(Stage.TRANSCRIBE) != first.run_id_of(Stage.TRANSCRIBE)


def test_mark_failed_ignores_superseded_run(env):
    recording = env.create_recording()
    registry = env.services.registry
    first = env.run(registry.begin_stage(recording.id, Stage.TRANSCRIBE))
    second = env.run(registry.begin_stage(recording.id, Stage.TRANSCRIBE))

    env.run(
        registry.mark_failed(
            recording.id,
            Stage.TRANSCRIBE,
            ErrorClass.PERMANENT,
            "late failure",
            run_id=first.run_id_of(Stage.TRANSCRIBE),
        )
    )
    status = env.run(registry.get_status(recording.id))
    assert status.transcription_status is StageStatus.PROCESSING

    env.run(
        registry.mark_failed(
            recording.id,
            Stage.TRANSCRIBE,
            ErrorClass.TRANSIENT,
            "upstream down",
            run_id=second.run_id_of(Stage.TRANSCRIBE),
        )
    )
    status = env.run(registry.get_status(recording.id))
    assert status.transcription_status is StageStatus.FAILED


def test_complete_run_requires_current_run():
    owner, stale = uuid4(), uuid4()
    recording = Recording(
        id=uuid4(),
        processing_status=StageStatus.PROCESSING,
        processing_run_id=owner,
    )

    with pytest.raises(StaleRunError):
        complete_run(recording, Stage.PROCESS, stale)

    complete_run(recording, Stage.PROCESS, owner)
    assert recording.processing_status is StageStatus.COMPLETED


def test_force_reset_clears_run(env):
    recording = env.create_recording()
    env.run(env.services.registry.begin_stage(recording.id, Stage.TRANSCRIBE))
    env.update_recording(
        recording.id, transcription_updated_at=utcnow() - timedelta(hours=1)
    )

    reset = env.run(env.services.registry.force_reset(recording.id, Stage.TRANSCRIBE))

    assert reset.run_id_of(Stage.TRANSCRIBE) is None
