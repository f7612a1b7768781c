import os
import time
import uuid

import pytest

from converter import ConverterConfig, ConversionJob, ConversionStatus, StatusStore

# 模拟外部工具的 shell 脚本，输出与真实 ffmpeg -progress pipe:1 相同的协议
FAKE_TOOLS = {
    "ffprobe": {
        "ok": "echo 60.0\n",
        "fail": "echo 'moov atom not found' >&2\nexit 1\n",
        "zero": "echo 0.000000\n",
        "inf": "echo inf\n",
        "nan": "echo nan\n",
        "garbage": "echo N/A\n",
        "hang": "exec sleep 10\n",
    },
    "ffmpeg": {
        "ok": (
            'for last; do :; done\n'
            "echo 'encoder warning' >&2\n"
            "printf 'frame=10\\nout_time_us=30000000\\nprogress=continue\\n'\n"
            "printf 'converted' > \"$last\"\n"
            "printf 'frame=20\\nout_time_us=60000000\\nprogress=end\\n'\n"
        ),
        "empty": (
            'for last; do :; done\n'
            ': > "$last"\n'
            "printf 'progress=end\\n'\n"
        ),
        "fail": (
            'for last; do :; done\n'
            "printf 'partial' > \"$last\"\n"
            "echo 'Invalid data found when processing input' >&2\n"
            "exit 1\n"
        ),
        "slow": (
            "printf 'frame=1\\n'\n"
            "exec sleep 30\n"
        ),
        "sleepy": (
            'for last; do :; done\n'
            "sleep 1\n"
            "printf 'converted' > \"$last\"\n"
            "printf 'progress=end\\n'\n"
        ),
    },
    "exiftool": {
        "ok": "exit 0\n",
        "fail": "echo 'Error: File format not supported'\nexit 1\n",
    },
}


@pytest.fixture
def fake_tool(tmp_path):
    """生成可执行的假工具脚本，返回脚本路径"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(tool: str, variant: str = "ok") -> str:
        path = bin_dir / f"{tool}-{variant}"
        path.write_text("#!/bin/sh\n" + FAKE_TOOLS[tool][variant])
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def config(tmp_path, fake_tool):
    return ConverterConfig(
        worker_count=1,
        uploads_dir=str(tmp_path / "uploads"),
        converted_dir=str(tmp_path / "converted"),
        ffmpeg_path=fake_tool("ffmpeg"),
        ffprobe_path=fake_tool("ffprobe"),
        exiftool_path=fake_tool("exiftool"),
        probe_timeout=5,
        metadata_timeout=5,
    )


@pytest.fixture
def store():
    return StatusStore()


@pytest.fixture
def make_job(config, store):
    """创建源文件、登记状态并返回 ConversionJob"""

    def _make(target_format: str = "mp4", **kwargs) -> ConversionJob:
        conversion_id = kwargs.pop("conversion_id", None) or uuid.uuid4().hex
        os.makedirs(config.uploads_dir, exist_ok=True)
        input_path = config.get_upload_path(f"{conversion_id}_source.mkv")
        with open(input_path, "wb") as f:
            f.write(b"source video")
        output_path = config.get_output_path(conversion_id, target_format)

        job = ConversionJob(
            conversion_id=conversion_id,
            input_path=input_path,
            output_path=output_path,
            target_format=target_format,
            **kwargs
        )
        store.put(conversion_id, ConversionStatus(
            input_path=input_path,
            output_path=output_path,
            format=target_format,
            quality=job.quality,
        ))
        return job

    return _make


@pytest.fixture
def wait_until():
    def _wait(predicate, timeout: float = 10.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return bool(predicate())

    return _wait
