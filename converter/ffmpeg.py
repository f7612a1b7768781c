"""
FFmpeg 进程管理模块

负责构建 FFmpeg 转换命令、启动进程，以及转换后的 exiftool 元数据复制。
"""

import subprocess
import logging
from typing import List, Tuple

from .config import ConverterConfig
from .task import ConversionJob
from .quality import resolve_quality_setting

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("mov", "mp4", "avi")


class UnsupportedFormatError(ValueError):
    """目标格式不受支持。"""


def supported_formats() -> List[str]:
    return list(SUPPORTED_FORMATS)


class FFmpegRunner:
    """FFmpeg 进程管理器

    构建 FFmpeg 命令并启动转换进程。进度通过 -progress pipe:1 输出到 stdout，
    日志输出到 stderr。
    """

    def __init__(self, config: ConverterConfig):
        """初始化 FFmpeg 运行器

        Args:
            config: 转换配置
        """
        self.config = config

    def build_command(self, job: ConversionJob) -> List[str]:
        """构建 FFmpeg 命令

        Args:
            job: 转换任务

        Returns:
            FFmpeg 命令列表

        Raises:
            UnsupportedFormatError: 目标格式不受支持
        """
        cmd = [
            self.config.ffmpeg_path,
            "-i", job.input_path,
            "-threads", str(self.config.get_encoder_threads()),
            "-progress", "pipe:1",  # 进度输出到 stdout
            "-nostats",
            "-v", self.config.loglevel,
        ]

        # 视频滤镜
        if job.reverse_video:
            cmd.extend(["-vf", "reverse"])

        # 音频参数
        cmd.extend(self._get_audio_params(job))

        # 格式相关的编码参数
        cmd.extend(self._get_format_params(job))

        cmd.extend(["-y", job.output_path])
        return cmd

    def _get_audio_params(self, job: ConversionJob) -> List[str]:
        if job.remove_sound:
            return ["-an"]
        if job.reverse_video:
            # 视频倒放时音频也要倒放
            return ["-af", "areverse"]
        return ["-c:a", "copy"]

    def _get_format_params(self, job: ConversionJob) -> List[str]:
        """获取目标格式的视频编码参数

        Args:
            job: 转换任务

        Returns:
            编码参数列表
        """
        quality = resolve_quality_setting(job.quality)

        if job.target_format == "mov":
            return ["-tag:v", "hvc1", "-c:v", "libx265",
                    "-preset", quality.preset, "-crf", str(quality.crf)]
        if job.target_format == "mp4":
            return ["-c:v", "libx265", "-preset", quality.preset, "-crf", str(quality.crf),
                    "-movflags", "+faststart"]
        if job.target_format == "avi":
            return ["-c:v", "libxvid", "-q:v", "3"]

        raise UnsupportedFormatError(f"Unsupported target format '{job.target_format}'")

    def start_process(self, command: List[str]) -> subprocess.Popen:
        """启动 FFmpeg 进程

        Args:
            command: FFmpeg 命令

        Returns:
            subprocess.Popen 对象，stdout / stderr 均为文本管道
        """
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1
        )
        logger.info(f"Started FFmpeg process with PID {process.pid}")
        return process

    def copy_metadata(self, source_path: str, output_path: str) -> Tuple[bool, str]:
        """使用 exiftool 把源文件元数据复制到输出文件（尽力而为）

        Args:
            source_path: 源文件路径
            output_path: 输出文件路径

        Returns:
            (成功标志, exiftool 输出或错误信息)
        """
        cmd = [
            self.config.exiftool_path,
            "-tagsFromFile", source_path,
            "-all:all>all:all",
            "-preserve",
            "-overwrite_original",
            output_path,
        ]
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.config.metadata_timeout
            )
        except subprocess.TimeoutExpired:
            return False, f"exiftool timed out after {self.config.metadata_timeout}s"
        except OSError as e:
            return False, str(e)

        output = (result.stdout or "").strip()
        if result.returncode != 0:
            return False, f"exiftool exited with code {result.returncode}: {output}"
        return True, output

    def get_command_line_string(self, command: List[str]) -> str:
        return " ".join(command)
