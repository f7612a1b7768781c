"""
转换配置模块

定义视频转换相关的配置参数和默认值。
"""

import os
import logging
from typing import List
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _default_worker_count() -> int:
    return os.cpu_count() or 1


@dataclass
class ConverterConfig:
    """转换配置

    从全局配置中读取转换相关参数，提供默认值。
    """

    # 工作线程
    worker_count: int = field(default_factory=_default_worker_count)

    # 目录配置
    uploads_dir: str = "uploads"
    converted_dir: str = "converted"

    # 外部工具
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    exiftool_path: str = "exiftool"

    # 超时配置（秒）
    probe_timeout: int = 15  # ffprobe 探测超时时间
    metadata_timeout: int = 60  # exiftool 元数据复制超时时间

    # FFmpeg 日志级别
    loglevel: str = "warning"

    # 保留给系统的 CPU 核心数（不分配给 FFmpeg）
    thread_reserve: int = 2

    # 进度估算（时长未知时的启发式模式）
    progress_throttle: float = 0.5  # 两次递增的最小间隔（秒）
    progress_step: float = 0.5  # 每次递增的百分比
    progress_ceiling: float = 99.0  # 运行中进度上限

    # 状态清理
    status_ttl: int = 3600  # 完成后保留状态的时间（秒）
    cleanup_interval: int = 300  # 清理间隔（秒）

    # HTTP 层
    max_file_size_mb: int = 2000
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'ConverterConfig':
        """从应用配置创建 ConverterConfig

        Args:
            app_config: 全局配置字典

        Returns:
            ConverterConfig 实例
        """
        converter_config = app_config.get("converter", {}) or {}

        # 合并默认值
        config = cls()

        for key in ("uploads_dir", "converted_dir", "ffmpeg_path", "ffprobe_path",
                    "exiftool_path", "loglevel"):
            if converter_config.get(key):
                setattr(config, key, str(converter_config[key]))

        for key in ("probe_timeout", "metadata_timeout", "thread_reserve",
                    "status_ttl", "cleanup_interval", "max_file_size_mb"):
            if key in converter_config:
                setattr(config, key, _as_int(key, converter_config[key], getattr(config, key)))

        for key in ("progress_throttle", "progress_step", "progress_ceiling"):
            if key in converter_config:
                setattr(config, key, _as_float(key, converter_config[key], getattr(config, key)))

        # 更新并发配置
        if "worker_count" in converter_config:
            default_workers = _default_worker_count()
            config.worker_count = _as_int("worker_count", converter_config["worker_count"], default_workers)
            if config.worker_count < 1:
                logger.warning(f"Invalid worker_count {config.worker_count}, using default {default_workers}")
                config.worker_count = default_workers

        # 更新跨域配置
        origins = converter_config.get("allowed_origins")
        if isinstance(origins, str):
            origins = origins.split(",")
        if origins:
            config.allowed_origins = [o.strip() for o in origins if o and o.strip()] or ["*"]

        return config

    def get_encoder_threads(self) -> int:
        """获取 FFmpeg 编码线程数

        Returns:
            线程数，至少为 1
        """
        return max(1, (os.cpu_count() or 1) - self.thread_reserve)

    def get_upload_path(self, file_name: str) -> str:
        """获取上传文件保存路径

        Args:
            file_name: 已清理的文件名

        Returns:
            上传文件的绝对路径
        """
        return os.path.abspath(os.path.join(self.uploads_dir, file_name))

    def get_output_path(self, base_name: str, target_format: str) -> str:
        """获取转换输出路径

        Args:
            base_name: 不含扩展名的文件名
            target_format: 目标格式

        Returns:
            输出文件的绝对路径
        """
        return os.path.abspath(os.path.join(self.converted_dir, f"{base_name}.{target_format}"))


def _as_int(key: str, value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer value for {key} ({value!r}), using default {default}")
        return default


def _as_float(key: str, value, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid number for {key} ({value!r}), using default {default}")
        return default


def get_converter_config(app_config: dict) -> ConverterConfig:
    """获取转换配置的便捷函数

    Args:
        app_config: 全局配置字典

    Returns:
        ConverterConfig 实例
    """
    return ConverterConfig.from_app_config(app_config)
