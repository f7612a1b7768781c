"""
转换状态存储

线程安全地保存两张表：
- 转换 ID -> ConversionStatus（状态表）
- 转换 ID -> 正在运行的 FFmpeg 进程（进程表）

两张表各自加锁。读取状态总是返回副本，写入只通过下面的窄接口完成。
"""

import os
import time
import queue
import logging
import threading
from contextlib import contextmanager
from subprocess import Popen
from typing import Dict, Optional, List, Any, Callable

from .task import ConversionStatus, TerminationReason, ABORT_SENTINEL

logger = logging.getLogger(__name__)

SUBSCRIBER_BUFFER_SIZE = 16


class StatusStore:
    """转换状态存储

    进程级共享状态，没有销毁流程；状态只会被外部调用 delete / evict_completed 移除。
    """

    def __init__(self, progress_ceiling: float = 99.0):
        """初始化状态存储

        Args:
            progress_ceiling: 运行中进度上限，成功后才会到 100
        """
        self.progress_ceiling = progress_ceiling

        self._statuses: Dict[str, ConversionStatus] = {}
        self._status_lock = threading.Lock()

        self._processes: Dict[str, Popen] = {}
        self._process_lock = threading.Lock()

        self._subscribers: List[queue.Queue] = []
        self._subscriber_lock = threading.Lock()

    # ------------------------------------------------------------------
    # 状态表
    # ------------------------------------------------------------------

    def put(self, conversion_id: str, status: ConversionStatus):
        """添加或替换转换状态

        Args:
            conversion_id: 转换 ID
            status: 状态记录（存储的是副本）
        """
        with self._status_lock:
            self._statuses[conversion_id] = status.copy()
        self._publish_status(conversion_id)

    def get(self, conversion_id: str) -> Optional[ConversionStatus]:
        """获取状态副本

        Args:
            conversion_id: 转换 ID

        Returns:
            ConversionStatus 副本，不存在返回 None
        """
        with self._status_lock:
            status = self._statuses.get(conversion_id)
            return status.copy() if status else None

    def get_all(self) -> Dict[str, ConversionStatus]:
        with self._status_lock:
            return {cid: status.copy() for cid, status in self._statuses.items()}

    def delete(self, conversion_id: str) -> bool:
        """删除状态记录（由外部调用方负责驱逐）

        Args:
            conversion_id: 转换 ID

        Returns:
            是否存在并被删除
        """
        with self._status_lock:
            existed = self._statuses.pop(conversion_id, None) is not None
        if existed:
            self._publish({"type": "removed", "conversionId": conversion_id})
        return existed

    def evict_completed(self, max_age: float) -> int:
        """驱逐完成时间超过 max_age 的状态

        Args:
            max_age: 完成后保留时间（秒）

        Returns:
            驱逐的数量
        """
        now = time.time()
        with self._status_lock:
            expired = [
                cid for cid, status in self._statuses.items()
                if status.complete and status.completed_at is not None
                and now - status.completed_at > max_age
            ]
            for cid in expired:
                self._statuses.pop(cid, None)

        for cid in expired:
            self._publish({"type": "removed", "conversionId": cid})
        return len(expired)

    def set_duration(self, conversion_id: str, duration_seconds: float) -> bool:
        return self._update(conversion_id, lambda s: _set_duration(s, duration_seconds))

    def set_progress(self, conversion_id: str, percentage: float) -> bool:
        """更新进度百分比

        进度被限制在 [0, progress_ceiling]，且只增不减；
        任务已完成或已请求中止时忽略。

        Args:
            conversion_id: 转换 ID
            percentage: 进度百分比

        Returns:
            是否更新
        """
        def apply(status: ConversionStatus) -> bool:
            if status.complete or status.abort_requested:
                return False
            progress = min(max(percentage, 0.0), self.progress_ceiling)
            if progress <= status.progress:
                return False
            status.progress = progress
            return True

        return self._update(conversion_id, apply)

    def advance_progress(self, conversion_id: str, step: float) -> bool:
        """在当前进度基础上递增（时长未知时使用）"""
        def apply(status: ConversionStatus) -> bool:
            if status.complete or status.abort_requested:
                return False
            progress = min(status.progress + step, self.progress_ceiling)
            if progress <= status.progress:
                return False
            status.progress = progress
            return True

        return self._update(conversion_id, apply)

    def mark_abort_requested(self, conversion_id: str) -> bool:
        """标记用户已请求中止

        只写入中止标记，不设置 complete，最终状态由执行任务的线程在进程退出后写入。
        """
        def apply(status: ConversionStatus) -> bool:
            if status.complete:
                return False
            status.abort_requested = True
            status.error = ABORT_SENTINEL
            return True

        return self._update(conversion_id, apply)

    def clear_abort_request(self, conversion_id: str) -> bool:
        """撤销中止标记（信号发送失败时使用）"""
        def apply(status: ConversionStatus) -> bool:
            if status.complete or not status.abort_requested:
                return False
            status.abort_requested = False
            status.error = ""
            return True

        return self._update(conversion_id, apply)

    def mark_failed(self, conversion_id: str, error_message: str) -> bool:
        """标记为失败（仅当尚未完成）

        Args:
            conversion_id: 转换 ID
            error_message: 错误信息

        Returns:
            是否由本次调用完成状态
        """
        return self._finish(conversion_id, TerminationReason.FAILED, error_message)

    def mark_succeeded(self, conversion_id: str) -> bool:
        return self._finish(conversion_id, TerminationReason.COMPLETED, "")

    def mark_aborted(self, conversion_id: str) -> bool:
        return self._finish(conversion_id, TerminationReason.ABORTED, ABORT_SENTINEL)

    def _finish(self, conversion_id: str, reason: TerminationReason, error: str) -> bool:
        def apply(status: ConversionStatus) -> bool:
            if status.complete:
                return False
            status.finish(reason, error)
            return True

        return self._update(conversion_id, apply)

    def _update(self, conversion_id: str, apply: Callable[[ConversionStatus], bool]) -> bool:
        with self._status_lock:
            status = self._statuses.get(conversion_id)
            updated = bool(status is not None and apply(status))
        if updated:
            self._publish_status(conversion_id)
        return updated

    # ------------------------------------------------------------------
    # 进程表
    # ------------------------------------------------------------------

    def register_process(self, conversion_id: str, process: Popen):
        with self._process_lock:
            self._processes[conversion_id] = process

    def unregister_process(self, conversion_id: str):
        with self._process_lock:
            self._processes.pop(conversion_id, None)

    def get_process(self, conversion_id: str) -> Optional[Popen]:
        with self._process_lock:
            return self._processes.get(conversion_id)

    @contextmanager
    def track_process(self, conversion_id: str, process: Popen):
        """在 with 块内登记进程，退出时无论成功失败都注销

        Args:
            conversion_id: 转换 ID
            process: FFmpeg 进程
        """
        self.register_process(conversion_id, process)
        try:
            yield process
        finally:
            self.unregister_process(conversion_id)

    def list_active(self) -> List[Dict[str, Any]]:
        """获取正在运行的转换列表

        只包含已登记进程且尚未完成的任务。

        Returns:
            活跃转换信息列表
        """
        with self._process_lock:
            active_ids = list(self._processes.keys())

        active = []
        with self._status_lock:
            for cid in active_ids:
                status = self._statuses.get(cid)
                if status is None or status.complete:
                    continue
                active.append({
                    "id": cid,
                    "fileName": os.path.basename(status.output_path),
                    "format": status.format,
                    "quality": status.quality,
                    "progress": status.progress,
                })
        return active

    # ------------------------------------------------------------------
    # 事件订阅
    # ------------------------------------------------------------------

    def subscribe(self) -> queue.Queue:
        """订阅状态变化事件

        Returns:
            接收事件字典的有界队列
        """
        events = queue.Queue(maxsize=SUBSCRIBER_BUFFER_SIZE)
        with self._subscriber_lock:
            self._subscribers.append(events)
        return events

    def unsubscribe(self, events: queue.Queue):
        with self._subscriber_lock:
            if events in self._subscribers:
                self._subscribers.remove(events)

    def _publish_status(self, conversion_id: str):
        status = self.get(conversion_id)
        if status is None:
            return
        self._publish({
            "type": "status",
            "conversionId": conversion_id,
            "status": status.to_dict(conversion_id),
        })

    def _publish(self, event: Dict[str, Any]):
        with self._subscriber_lock:
            subscribers = list(self._subscribers)
        for events in subscribers:
            try:
                events.put_nowait(event)
            except queue.Full:
                # 订阅方太慢，丢弃事件
                logger.debug(f"Dropped {event['type']} event for {event['conversionId']}")


def _set_duration(status: ConversionStatus, duration_seconds: float) -> bool:
    status.duration_seconds = max(duration_seconds, 0.0)
    return True
