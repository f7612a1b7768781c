import time

import pytest

from converter import FFprobeRunner


def test_duration_parsed(fake_tool):
    runner = FFprobeRunner(fake_tool("ffprobe", "ok"))
    assert runner.get_duration("/data/in.mkv") == (True, 60.0, None)


def test_nonzero_exit_reports_stderr(fake_tool):
    success, duration, error = FFprobeRunner(fake_tool("ffprobe", "fail")).get_duration("/data/in.mkv")
    assert success is False
    assert duration == 0.0
    assert "moov atom not found" in error


def test_zero_duration_is_a_failure(fake_tool):
    success, duration, error = FFprobeRunner(fake_tool("ffprobe", "zero")).get_duration("/data/in.mkv")
    assert success is False
    assert "Invalid duration" in error


@pytest.mark.parametrize("variant", ["inf", "nan"])
def test_non_finite_duration_is_a_failure(fake_tool, variant):
    success, duration, error = FFprobeRunner(fake_tool("ffprobe", variant)).get_duration("/data/in.mkv")
    assert success is False
    assert duration == 0.0
    assert "Invalid duration" in error


def test_unparseable_output(fake_tool):
    success, _, error = FFprobeRunner(fake_tool("ffprobe", "garbage")).get_duration("/data/in.mkv")
    assert success is False
    assert "N/A" in error


def test_timeout_kills_probe(fake_tool):
    runner = FFprobeRunner(fake_tool("ffprobe", "hang"))
    started = time.monotonic()
    success, _, error = runner.get_duration("/data/in.mkv", timeout=1)
    assert time.monotonic() - started < 5
    assert success is False
    assert "timed out" in error


def test_missing_executable(tmp_path):
    success, _, error = FFprobeRunner(str(tmp_path / "ffprobe")).get_duration("/data/in.mkv")
    assert success is False
    assert error == "ffprobe not found"
