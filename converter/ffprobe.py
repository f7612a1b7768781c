"""
FFprobe 时长探测模块

使用 ffprobe 获取源文件时长，用于把 FFmpeg 的编码位置换算为百分比。
探测失败不会导致任务失败，只会让进度估算退化为启发式模式。
"""

import os
import math
import subprocess
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class FFprobeRunner:
    """FFprobe 运行器"""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        """初始化 FFprobe 运行器

        Args:
            ffprobe_path: ffprobe 可执行文件路径
        """
        self.ffprobe_path = ffprobe_path

    def build_command(self, file_path: str) -> list:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            file_path,
        ]

    def get_duration(
        self,
        file_path: str,
        timeout: int = 15
    ) -> Tuple[bool, float, Optional[str]]:
        """获取视频时长

        超时后子进程会被杀掉。

        Args:
            file_path: 源文件路径
            timeout: 超时时间（秒）

        Returns:
            (成功标志, 时长秒数, 错误信息)
        """
        name = os.path.basename(file_path)
        try:
            result = subprocess.run(
                self.build_command(file_path),
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            logger.error(f"ffprobe timed out after {timeout}s for {name}")
            return False, 0.0, f"ffprobe timed out getting duration for {name}"
        except FileNotFoundError:
            logger.error("ffprobe executable not found")
            return False, 0.0, "ffprobe not found"
        except OSError as e:
            logger.error(f"Error running ffprobe: {e}")
            return False, 0.0, str(e)

        if result.returncode != 0:
            error_msg = result.stderr.strip() or "Unknown ffprobe error"
            return False, 0.0, f"ffprobe failed for {name} (code {result.returncode}): {error_msg}"

        duration_str = result.stdout.strip()
        try:
            duration = float(duration_str)
        except ValueError:
            return False, 0.0, f"Failed to parse ffprobe duration output '{duration_str}'"

        if not math.isfinite(duration) or duration <= 0:
            return False, 0.0, f"Invalid duration {duration} reported by ffprobe for {name}"

        logger.info(f"Detected duration for {name}: {duration:.2f} seconds")
        return True, duration, None

