"""
转换进程监管

负责单个转换任务的完整执行流程：
1. ffprobe 探测时长（失败时退化为启发式进度）
2. 构建并启动 FFmpeg，进程登记到 StatusStore
3. 两个线程分别读取 stderr（诊断日志）和 stdout（进度）
4. 进程退出后判定结果：成功 / 失败 / 用户中止
5. 成功时尝试复制元数据，最后清理源文件和不完整的输出
"""

import os
import logging
import threading
from collections import deque
from subprocess import Popen
from typing import Optional, Tuple, List

from .config import ConverterConfig
from .task import ConversionJob
from .store import StatusStore
from .ffprobe import FFprobeRunner
from .ffmpeg import FFmpegRunner, UnsupportedFormatError
from .progress import ProgressParser

logger = logging.getLogger(__name__)

# 失败信息中保留的 FFmpeg 诊断输出行数
DIAGNOSTIC_TAIL_LINES = 50


class ConversionSupervisor:
    """转换进程监管器

    run() 捕获任务内的所有异常并转换为终止状态，不会向工作线程抛出。
    """

    def __init__(
        self,
        config: ConverterConfig,
        store: StatusStore,
        ffprobe_runner: Optional[FFprobeRunner] = None,
        ffmpeg_runner: Optional[FFmpegRunner] = None
    ):
        """初始化监管器

        Args:
            config: 转换配置
            store: 状态存储
            ffprobe_runner: 时长探测器，默认按配置创建
            ffmpeg_runner: FFmpeg 运行器，默认按配置创建
        """
        self.config = config
        self.store = store
        self.ffprobe_runner = ffprobe_runner or FFprobeRunner(config.ffprobe_path)
        self.ffmpeg_runner = ffmpeg_runner or FFmpegRunner(config)

    def run(self, job: ConversionJob):
        """执行转换任务直到进入终止状态

        Args:
            job: 转换任务
        """
        try:
            self._convert(job)
        except Exception as e:
            logger.exception(f"Unexpected error in job {job.conversion_id}: {e}")
            self._fail(job, f"Unexpected conversion error: {e}")

    def _convert(self, job: ConversionJob):
        conversion_id = job.conversion_id

        # 探测时长
        duration = self._probe_duration(job)
        self.store.set_duration(conversion_id, duration)

        # 确保输出目录存在
        output_dir = os.path.dirname(job.output_path)
        try:
            if output_dir:
                os.makedirs(output_dir, exist_ok=True)
        except OSError as e:
            self._fail(job, f"Failed to ensure output directory exists: {e}")
            return

        # 构建命令
        try:
            command = self.ffmpeg_runner.build_command(job)
        except UnsupportedFormatError as e:
            self._fail(job, str(e))
            return

        logger.info(f"Executing FFmpeg for job {conversion_id}: "
                    f"{self.ffmpeg_runner.get_command_line_string(command)}")

        try:
            process = self.ffmpeg_runner.start_process(command)
        except OSError as e:
            self._fail(job, f"Failed to start FFmpeg: {e}")
            return

        with self.store.track_process(conversion_id, process):
            return_code, diagnostics = self._supervise(job, process, duration)

        self._classify_exit(job, return_code, diagnostics)

    def _probe_duration(self, job: ConversionJob) -> float:
        success, duration, error = self.ffprobe_runner.get_duration(
            job.input_path,
            timeout=self.config.probe_timeout
        )
        if not success:
            logger.warning(f"Could not get video duration for job {job.conversion_id}: {error}. "
                           f"Progress estimation will be inaccurate.")
            return 0.0
        return duration

    def _supervise(self, job: ConversionJob, process: Popen, duration: float) -> Tuple[int, List[str]]:
        """读取 FFmpeg 的两个输出流并等待进程退出

        两个读取线程都结束后才读取退出码。

        Args:
            job: 转换任务
            process: FFmpeg 进程
            duration: 源文件时长（秒）

        Returns:
            (退出码, 诊断输出末尾若干行)
        """
        conversion_id = job.conversion_id
        diagnostics = deque(maxlen=DIAGNOSTIC_TAIL_LINES)
        parser = ProgressParser(
            self.store,
            conversion_id,
            duration=duration,
            step=self.config.progress_step,
            throttle=self.config.progress_throttle
        )

        readers = [
            threading.Thread(
                target=self._drain_diagnostics,
                args=(conversion_id, process.stderr, diagnostics),
                daemon=True,
                name=f"FFmpegStderr-{conversion_id[:8]}"
            ),
            threading.Thread(
                target=self._drain_progress,
                args=(parser, process.stdout),
                daemon=True,
                name=f"FFmpegProgress-{conversion_id[:8]}"
            ),
        ]
        for reader in readers:
            reader.start()

        try:
            for reader in readers:
                reader.join()
            return_code = process.wait()
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        return return_code, list(diagnostics)

    def _drain_diagnostics(self, conversion_id: str, stream, sink: deque):
        try:
            with stream:
                for line in stream:
                    line = line.rstrip()
                    if line:
                        logger.debug(f"FFmpeg stderr [{conversion_id}]: {line}")
                        sink.append(line)
        except (OSError, ValueError) as e:
            logger.warning(f"Error reading FFmpeg stderr for job {conversion_id}: {e}")

    def _drain_progress(self, parser: ProgressParser, stream):
        try:
            with stream:
                parser.parse(stream)
                # progress=end 之后继续读空管道
                for _ in stream:
                    pass
        except (OSError, ValueError) as e:
            logger.warning(f"Error draining FFmpeg stdout for job {parser.conversion_id}: {e}")

    def _classify_exit(self, job: ConversionJob, return_code: int, diagnostics: List[str]):
        """根据退出码、中止标记和输出文件判定任务结果

        Args:
            job: 转换任务
            return_code: FFmpeg 退出码
            diagnostics: FFmpeg 诊断输出
        """
        conversion_id = job.conversion_id
        status = self.store.get(conversion_id)

        if status is None:
            logger.warning(f"Status not found for job {conversion_id} after FFmpeg finished")
            self._remove_file(conversion_id, job.output_path, "incomplete output")
            self._remove_file(conversion_id, job.input_path, "input")
            return

        if status.abort_requested:
            self.store.mark_aborted(conversion_id)
            logger.info(f"Job {conversion_id} aborted by user (FFmpeg exit code {return_code})")
            self._remove_file(conversion_id, job.output_path, "incomplete output")
            self._remove_file(conversion_id, job.input_path, "input")
            return

        if return_code != 0:
            ffmpeg_output = "\n".join(diagnostics)
            error_msg = f"FFmpeg execution failed: exit code {return_code}"
            logger.error(f"Job {conversion_id}: {error_msg}\nFFmpeg Output:\n{ffmpeg_output}")
            self._fail(job, f"{error_msg}: {ffmpeg_output}" if ffmpeg_output else error_msg)
            return

        # 检查输出文件
        try:
            output_size = os.path.getsize(job.output_path)
        except OSError as e:
            self._fail(job, f"FFmpeg finished but output file error: {e}")
            return
        if output_size == 0:
            self._fail(job, "FFmpeg finished but output file is empty (0 bytes)")
            return

        self._copy_metadata(job)

        self.store.mark_succeeded(conversion_id)
        logger.info(f"Conversion successful for job {conversion_id}: "
                    f"{job.display_name} -> {os.path.basename(job.output_path)} "
                    f"({output_size} bytes)")
        self._remove_file(conversion_id, job.input_path, "original")

    def _copy_metadata(self, job: ConversionJob):
        logger.info(f"Attempting metadata copy for job {job.conversion_id} using exiftool...")
        success, output = self.ffmpeg_runner.copy_metadata(job.input_path, job.output_path)
        if success:
            logger.info(f"Successfully copied metadata for job {job.conversion_id}")
        else:
            logger.warning(f"exiftool failed to copy metadata for job {job.conversion_id}: {output}")

    def _fail(self, job: ConversionJob, error_msg: str):
        """标记失败并清理输入文件和不完整的输出文件

        Args:
            job: 转换任务
            error_msg: 错误信息
        """
        logger.error(f"Job {job.conversion_id} failed: {error_msg}")
        self.store.mark_failed(job.conversion_id, error_msg)
        self._remove_file(job.conversion_id, job.output_path, "incomplete output")
        self._remove_file(job.conversion_id, job.input_path, "input")

    def _remove_file(self, conversion_id: str, path: str, label: str):
        try:
            os.remove(path)
            logger.info(f"Removed {label} file for job {conversion_id}: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove {label} file {path} for job {conversion_id}: {e}")
