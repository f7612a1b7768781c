import os
import threading

import pytest

from converter import (
    ABORT_SENTINEL,
    AbortResult,
    ConversionSupervisor,
    TerminationReason,
    abort_conversion,
)


def _supervisor(config, store):
    return ConversionSupervisor(config, store)


def test_successful_conversion(config, store, make_job):
    job = make_job("mp4")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.complete
    assert status.error == ""
    assert status.progress == 100.0
    assert status.termination_reason == TerminationReason.COMPLETED
    assert status.duration_seconds == 60.0

    with open(job.output_path) as f:
        assert f.read() == "converted"
    assert not os.path.exists(job.input_path)
    assert store.get_process(job.conversion_id) is None


def test_progress_events_follow_duration(config, store, make_job):
    job = make_job("mp4")
    events = store.subscribe()
    _supervisor(config, store).run(job)

    snapshots = []
    while not events.empty():
        event = events.get_nowait()
        if event["type"] == "status":
            snapshots.append(event["status"])

    running = [s["progress"] for s in snapshots if not s["complete"]]
    assert running == sorted(running)
    assert any(p == pytest.approx(50.0) for p in running)
    assert snapshots[-1]["complete"] is True
    assert snapshots[-1]["progress"] == 100.0


def test_probe_failure_still_completes(config, store, make_job, fake_tool):
    config.ffprobe_path = fake_tool("ffprobe", "fail")
    job = make_job("mov")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.duration_seconds == 0.0
    assert status.complete
    assert status.error == ""
    assert status.progress == 100.0


def test_empty_output_is_a_failure(config, store, make_job, fake_tool):
    config.ffmpeg_path = fake_tool("ffmpeg", "empty")
    job = make_job("mp4")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.complete
    assert status.termination_reason == TerminationReason.FAILED
    assert "empty" in status.error
    assert not os.path.exists(job.output_path)
    assert not os.path.exists(job.input_path)


def test_encoder_failure_captures_diagnostics(config, store, make_job, fake_tool):
    config.ffmpeg_path = fake_tool("ffmpeg", "fail")
    job = make_job("avi")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.complete
    assert not status.aborted
    assert status.error.startswith("FFmpeg execution failed: exit code 1")
    assert "Invalid data found when processing input" in status.error
    assert status.progress == 0.0
    assert not os.path.exists(job.output_path)
    assert not os.path.exists(job.input_path)


def test_unsupported_format_fails_before_spawning(config, store, make_job, tmp_path):
    marker = tmp_path / "spawned"
    script = tmp_path / "bin" / "ffmpeg-marker"
    script.write_text(f"#!/bin/sh\ntouch {marker}\n")
    script.chmod(0o755)
    config.ffmpeg_path = str(script)

    job = make_job("webm")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.complete
    assert status.error == "Unsupported target format 'webm'"
    assert not marker.exists()
    assert not os.path.exists(job.input_path)


def test_missing_encoder_fails_job(config, store, make_job, tmp_path):
    config.ffmpeg_path = str(tmp_path / "no-such-ffmpeg")
    job = make_job("mp4")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.complete
    assert status.error.startswith("Failed to start FFmpeg")


def test_metadata_copy_failure_keeps_success(config, store, make_job, fake_tool):
    config.exiftool_path = fake_tool("exiftool", "fail")
    job = make_job("mp4")
    _supervisor(config, store).run(job)

    status = store.get(job.conversion_id)
    assert status.termination_reason == TerminationReason.COMPLETED
    assert os.path.getsize(job.output_path) > 0


def test_abort_running_conversion(config, store, make_job, fake_tool, wait_until):
    config.ffmpeg_path = fake_tool("ffmpeg", "slow")
    job = make_job("mp4")
    worker = threading.Thread(target=_supervisor(config, store).run, args=(job,))
    worker.start()

    assert wait_until(lambda: store.get_process(job.conversion_id) is not None)
    process = store.get_process(job.conversion_id)
    assert store.list_active()[0]["id"] == job.conversion_id

    assert abort_conversion(store, job.conversion_id) == AbortResult.OK
    worker.join(timeout=10)
    assert not worker.is_alive()

    assert process.returncode != 0
    status = store.get(job.conversion_id)
    assert status.complete
    assert status.aborted
    assert status.termination_reason == TerminationReason.ABORTED
    assert status.error == ABORT_SENTINEL
    assert not os.path.exists(job.input_path)
    assert store.get_process(job.conversion_id) is None
    assert store.list_active() == []


def test_abort_after_completion_leaves_status_alone(config, store, make_job):
    job = make_job("mp4")
    _supervisor(config, store).run(job)
    before = store.get(job.conversion_id)

    assert abort_conversion(store, job.conversion_id) == AbortResult.ALREADY_COMPLETE
    assert store.get(job.conversion_id) == before
