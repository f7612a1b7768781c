import pytest

from converter import ConversionJob, FFmpegRunner, UnsupportedFormatError, supported_formats
from converter.quality import (
    resolve_quality_setting,
    is_valid_quality_name,
    available_quality_settings,
)


@pytest.fixture
def runner(config, monkeypatch):
    monkeypatch.setattr("converter.config.os.cpu_count", lambda: 8)
    config.ffmpeg_path = "ffmpeg"
    return FFmpegRunner(config)


def _job(target_format="mp4", **kwargs):
    return ConversionJob(
        conversion_id="job1",
        input_path="/data/in.mkv",
        output_path="/data/out/clip." + target_format,
        target_format=target_format,
        **kwargs
    )


def test_mp4_command(runner):
    assert runner.build_command(_job("mp4")) == [
        "ffmpeg", "-i", "/data/in.mkv",
        "-threads", "6",
        "-progress", "pipe:1", "-nostats", "-v", "warning",
        "-c:a", "copy",
        "-c:v", "libx265", "-preset", "slow", "-crf", "22", "-movflags", "+faststart",
        "-y", "/data/out/clip.mp4",
    ]


def test_mov_uses_quality_preset(runner):
    cmd = runner.build_command(_job("mov", quality="high"))
    assert cmd[cmd.index("-tag:v") + 1] == "hvc1"
    assert cmd[cmd.index("-preset") + 1] == "slower"
    assert cmd[cmd.index("-crf") + 1] == "20"


def test_avi_ignores_quality(runner):
    cmd = runner.build_command(_job("avi", quality="fast"))
    assert cmd[-6:] == ["-c:v", "libxvid", "-q:v", "3", "-y", "/data/out/clip.avi"]
    assert "-crf" not in cmd


def test_reverse_reverses_audio_too(runner):
    cmd = runner.build_command(_job(reverse_video=True))
    assert cmd[cmd.index("-vf") + 1] == "reverse"
    assert cmd[cmd.index("-af") + 1] == "areverse"
    assert "copy" not in cmd


def test_remove_sound_wins_over_audio_reverse(runner):
    cmd = runner.build_command(_job(reverse_video=True, remove_sound=True))
    assert "-an" in cmd
    assert "-af" not in cmd


def test_unsupported_format_raises(runner):
    with pytest.raises(UnsupportedFormatError, match="webm"):
        runner.build_command(_job("webm"))


def test_thread_count_never_below_one(config, monkeypatch):
    monkeypatch.setattr("converter.config.os.cpu_count", lambda: 1)
    assert config.get_encoder_threads() == 1


def test_supported_formats():
    assert supported_formats() == ["mov", "mp4", "avi"]


def test_copy_metadata_success(config, fake_tool):
    config.exiftool_path = fake_tool("exiftool", "ok")
    assert FFmpegRunner(config).copy_metadata("/in.mkv", "/out.mp4") == (True, "")


def test_copy_metadata_failure_is_reported(config, fake_tool):
    config.exiftool_path = fake_tool("exiftool", "fail")
    success, output = FFmpegRunner(config).copy_metadata("/in.mkv", "/out.mp4")
    assert success is False
    assert "File format not supported" in output


def test_copy_metadata_missing_tool(config, tmp_path):
    config.exiftool_path = str(tmp_path / "no-such-exiftool")
    success, output = FFmpegRunner(config).copy_metadata("/in.mkv", "/out.mp4")
    assert success is False
    assert output


def test_quality_lookup():
    assert resolve_quality_setting(" HIGH ").name == "high"
    assert resolve_quality_setting("unknown").name == "default"
    assert resolve_quality_setting("").preset == "slow"
    assert is_valid_quality_name("Fast")
    assert not is_valid_quality_name("ultra")
    assert [q.name for q in available_quality_settings()] == ["default", "high", "fast"]
