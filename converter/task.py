"""
转换任务数据模型

定义转换任务、转换状态以及终止原因。
"""

import os
import time
import copy
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

# 用户主动中止时写入 error 字段的固定文本
ABORT_SENTINEL = "Conversion aborted by user"


class TerminationReason(Enum):
    """终止原因枚举"""
    COMPLETED = "completed"  # 转换成功
    FAILED = "failed"        # 转换失败
    ABORTED = "aborted"      # 用户中止


@dataclass(frozen=True)
class ConversionJob:
    """转换任务

    提交给工作线程的不可变请求。状态记录不随任务传递，
    而是通过 conversion_id 在 StatusStore 中查找。
    """

    conversion_id: str
    input_path: str  # 已落地的源文件绝对路径
    output_path: str  # 输出文件绝对路径
    target_format: str
    quality: str = "default"
    reverse_video: bool = False
    remove_sound: bool = False
    file_name: str = ""  # 上传时的原始文件名，用于日志

    @property
    def display_name(self) -> str:
        return self.file_name or os.path.basename(self.input_path)


@dataclass
class ConversionStatus:
    """转换状态

    每个任务一条，由执行任务的工作线程写入，轮询方读取副本。
    """

    input_path: str
    output_path: str
    format: str
    quality: str = "default"

    # 进度信息
    progress: float = 0.0
    duration_seconds: float = 0.0  # ffprobe 探测到的时长，未知时为 0

    # 结束信息
    complete: bool = False
    error: str = ""
    abort_requested: bool = False
    termination_reason: Optional[TerminationReason] = None

    # 时间戳
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    def __post_init__(self):
        """初始化后处理"""
        if isinstance(self.termination_reason, str):
            self.termination_reason = TerminationReason(self.termination_reason)

    @property
    def aborted(self) -> bool:
        return self.termination_reason == TerminationReason.ABORTED

    @property
    def succeeded(self) -> bool:
        return self.termination_reason == TerminationReason.COMPLETED

    def copy(self) -> 'ConversionStatus':
        return copy.copy(self)

    def finish(self, reason: TerminationReason, error: str = ""):
        """设置终止状态（只应由 StatusStore 在持锁时调用）

        Args:
            reason: 终止原因
            error: 错误信息，成功时为空
        """
        self.complete = True
        self.termination_reason = reason
        self.error = error
        self.progress = 100.0 if reason == TerminationReason.COMPLETED else 0.0
        self.completed_at = time.time()

    def to_dict(self, conversion_id: str) -> Dict[str, Any]:
        """转换为字典（用于 API 响应）

        Args:
            conversion_id: 转换 ID

        Returns:
            字典表示
        """
        result = {
            "id": conversion_id,
            "fileName": os.path.basename(self.output_path),
            "progress": self.progress,
            "complete": self.complete,
            "format": self.format,
            "quality": self.quality,
            "aborted": self.aborted,
        }

        if self.error:
            result["error"] = self.error
        if self.termination_reason:
            result["terminationReason"] = self.termination_reason.value
        if self.succeeded and self.output_path:
            result["downloadUrl"] = f"/download/{os.path.basename(self.output_path)}"

        return result
