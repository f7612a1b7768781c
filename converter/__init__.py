"""
视频转换服务模块

接收转换请求，交给 FFmpeg 执行，并向调用方报告进度和完成状态。

核心组件：
- 有界任务队列 + 固定数量的工作线程（队列满时立即拒绝）
- 进程监管：ffprobe 探测时长、启动 FFmpeg、并发读取 stdout / stderr
- 进度解析：解析 -progress 输出的 key=value 行
- 状态存储：线程安全的状态表和进程表
- 中止：向 FFmpeg 发送终止信号，由监管线程写入最终状态
"""

from .config import ConverterConfig, get_converter_config
from .task import ConversionJob, ConversionStatus, TerminationReason, ABORT_SENTINEL
from .quality import QualitySetting, resolve_quality_setting, available_quality_settings
from .store import StatusStore
from .ffprobe import FFprobeRunner
from .ffmpeg import FFmpegRunner, UnsupportedFormatError, supported_formats
from .progress import ProgressParser
from .abort import AbortResult, abort_conversion
from .supervisor import ConversionSupervisor
from .manager import VideoConverter

__all__ = [
    'ConverterConfig',
    'get_converter_config',
    'ConversionJob',
    'ConversionStatus',
    'TerminationReason',
    'ABORT_SENTINEL',
    'QualitySetting',
    'resolve_quality_setting',
    'available_quality_settings',
    'StatusStore',
    'FFprobeRunner',
    'FFmpegRunner',
    'UnsupportedFormatError',
    'supported_formats',
    'ProgressParser',
    'AbortResult',
    'abort_conversion',
    'ConversionSupervisor',
    'VideoConverter',
]
