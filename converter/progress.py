"""
FFmpeg 进度解析模块

解析 `-progress pipe:1` 输出的 key=value 行，把编码位置换算成百分比写入 StatusStore。

两种模式：
- 已知时长：out_time_us / 时长 * 100
- 未知时长：每隔 throttle 秒在 out_time_us / frame 行上递增 step，上限由 StatusStore 控制

遇到 progress=end 立即停止解析，100% 只由任务结束时写入。
"""

import time
import logging
from typing import Iterable, Callable, Optional

from .store import StatusStore

logger = logging.getLogger(__name__)


class ProgressParser:
    """FFmpeg 进度流解析器"""

    def __init__(
        self,
        store: StatusStore,
        conversion_id: str,
        duration: float = 0.0,
        step: float = 0.5,
        throttle: float = 0.5,
        clock: Callable[[], float] = time.monotonic
    ):
        """初始化进度解析器

        Args:
            store: 状态存储
            conversion_id: 转换 ID
            duration: 源文件时长（秒），0 表示未知
            step: 未知时长时每次递增的百分比
            throttle: 未知时长时两次递增的最小间隔（秒）
            clock: 单调时钟
        """
        self.store = store
        self.conversion_id = conversion_id
        self.duration = duration
        self.step = step
        self.throttle = throttle
        self.clock = clock
        self._last_update: Optional[float] = None

    @property
    def has_duration(self) -> bool:
        return self.duration > 0

    def parse(self, lines: Iterable[str]) -> bool:
        """消费进度行直到 progress=end 或流结束

        Args:
            lines: 进度输出行（通常是进程的 stdout）

        Returns:
            是否遇到 progress=end
        """
        try:
            for line in lines:
                if self.handle_line(line):
                    logger.info(f"FFmpeg progress stream ended for job {self.conversion_id}")
                    return True
        except (OSError, ValueError) as e:
            logger.warning(f"Error reading FFmpeg progress for job {self.conversion_id}: {e}")
        return False

    def handle_line(self, line: str) -> bool:
        """处理单行进度输出

        Args:
            line: 形如 key=value 的行

        Returns:
            是否为 progress=end
        """
        key, sep, value = line.strip().partition("=")
        if not sep:
            return False
        key = key.strip()
        value = value.strip()

        if key == "progress":
            return value == "end"

        if self.has_duration:
            if key == "out_time_us":
                self._update_from_out_time(value)
        elif key in ("out_time_us", "frame"):
            self._advance()
        return False

    def _update_from_out_time(self, value: str):
        try:
            out_time_us = float(value)
        except ValueError:
            # 起始阶段 FFmpeg 可能输出 N/A
            return
        if out_time_us < 0:
            return
        percentage = (out_time_us / 1_000_000.0) / self.duration * 100.0
        self.store.set_progress(self.conversion_id, percentage)
        self._last_update = self.clock()

    def _advance(self):
        now = self.clock()
        if self._last_update is not None and now - self._last_update < self.throttle:
            return
        self.store.advance_progress(self.conversion_id, self.step)
        self._last_update = now
