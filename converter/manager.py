"""
转换任务队列和工作线程池

- 有界队列，容量为工作线程数的 2 倍，满时立即拒绝，不阻塞提交方
- 每个工作线程一次只执行一个任务
- stop() 关闭入口，等待已排队和执行中的任务全部完成
"""

import queue
import logging
import threading
from typing import Optional, List, Tuple, Dict, Any

from .config import ConverterConfig
from .task import ConversionJob
from .store import StatusStore
from .supervisor import ConversionSupervisor
from .abort import AbortResult, abort_conversion

logger = logging.getLogger(__name__)

# 队列中通知工作线程退出的标记
_STOP = object()


class VideoConverter:
    """转换任务管理器

    管理任务队列和工作线程，把任务交给 ConversionSupervisor 执行。
    """

    def __init__(
        self,
        config: ConverterConfig,
        store: StatusStore,
        supervisor: Optional[ConversionSupervisor] = None
    ):
        """初始化转换管理器

        Args:
            config: 转换配置
            store: 状态存储
            supervisor: 进程监管器，默认按配置创建
        """
        self.config = config
        self.store = store
        self.supervisor = supervisor or ConversionSupervisor(config, store)

        self.worker_count = 0
        self._queue: Optional[queue.Queue] = None
        self._workers: List[threading.Thread] = []
        self._intake_lock = threading.Lock()
        self._accepting = False

    def start(self, worker_count: Optional[int] = None):
        """启动工作线程

        Args:
            worker_count: 工作线程数，默认使用配置值
        """
        if worker_count is None:
            worker_count = self.config.worker_count
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")

        with self._intake_lock:
            if self._accepting:
                raise RuntimeError("VideoConverter is already running")
            self.worker_count = worker_count
            self._queue = queue.Queue(maxsize=worker_count * 2)
            self._workers = [
                threading.Thread(
                    target=self._worker_loop,
                    args=(i + 1,),
                    daemon=True,
                    name=f"ConversionWorker-{i + 1}"
                )
                for i in range(worker_count)
            ]
            self._accepting = True

        for worker in self._workers:
            worker.start()
        logger.info(f"Started {worker_count} conversion workers")

    def stop(self):
        """关闭任务入口并等待所有任务完成"""
        with self._intake_lock:
            if not self._accepting:
                return
            self._accepting = False

        # 队列可能已满，这里阻塞等待工作线程腾出位置
        for _ in self._workers:
            self._queue.put(_STOP)
        for worker in self._workers:
            worker.join()

        self._workers = []
        logger.info("All conversion workers stopped")

    def submit(self, job: ConversionJob) -> Tuple[bool, str]:
        """提交转换任务，不阻塞

        Args:
            job: 转换任务

        Returns:
            (成功标志, 消息)，队列已满或已停止时返回 False
        """
        name = job.display_name
        with self._intake_lock:
            if not self._accepting:
                logger.error(f"Failed to queue job {job.conversion_id}: converter is not running")
                return False, "Conversion service is not running"
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                logger.error(f"Failed to queue job {job.conversion_id}: conversion queue is full")
                return False, f"Conversion queue is full, cannot accept job {job.conversion_id}"

        logger.info(f"Job {job.conversion_id} queued (File: {name})")
        return True, "Job queued"

    def abort(self, conversion_id: str) -> AbortResult:
        return abort_conversion(self.store, conversion_id)

    def is_running(self) -> bool:
        return self._accepting

    def get_status_summary(self) -> Dict[str, Any]:
        """获取状态摘要

        Returns:
            状态摘要字典
        """
        return {
            "workers": self.worker_count,
            "queued": self._queue.qsize() if self._queue else 0,
            "queue_capacity": self.worker_count * 2,
            "active": len(self.store.list_active()),
        }

    def _worker_loop(self, worker_id: int):
        """工作线程循环

        Args:
            worker_id: 工作线程编号
        """
        logger.info(f"Worker {worker_id} started")
        while True:
            job = self._queue.get()
            if job is _STOP:
                break
            name = job.display_name
            logger.info(f"Worker {worker_id}: Processing job {job.conversion_id} (File: {name})")
            try:
                self.supervisor.run(job)
            except Exception as e:
                logger.exception(f"Worker {worker_id}: Unhandled error in job {job.conversion_id}: {e}")
            logger.info(f"Worker {worker_id}: Finished job {job.conversion_id}")
        logger.info(f"Worker {worker_id} stopped")

