"""
转换中止

向正在运行的 FFmpeg 进程发送终止信号。这里只请求终止并写入中止标记，
最终状态由执行任务的线程在进程真正退出后写入。
"""

import logging
from enum import Enum

from .store import StatusStore

logger = logging.getLogger(__name__)


class AbortResult(Enum):
    """中止请求结果"""
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_COMPLETE = "already_complete"
    SIGNAL_ERROR = "signal_error"


def abort_conversion(store: StatusStore, conversion_id: str) -> AbortResult:
    """中止转换任务

    先发送 SIGTERM，发送失败时再发送 SIGKILL。
    返回 OK 只表示信号已送达，不代表任务已经停止。

    Args:
        store: 状态存储
        conversion_id: 转换 ID

    Returns:
        AbortResult
    """
    status = store.get(conversion_id)
    if status is None:
        return AbortResult.NOT_FOUND
    if status.complete:
        return AbortResult.ALREADY_COMPLETE

    process = store.get_process(conversion_id)
    if process is None:
        # 进程可能刚刚结束
        status = store.get(conversion_id)
        if status is not None and status.complete:
            logger.warning(f"Abort requested for job {conversion_id} but it completed before processing")
            return AbortResult.ALREADY_COMPLETE
        logger.warning(f"Abort requested for job {conversion_id} but no active process found")
        return AbortResult.NOT_FOUND

    logger.info(f"Attempting to abort conversion process for job {conversion_id} (PID {process.pid})")

    # 中止标记必须先于信号写入
    if not store.mark_abort_requested(conversion_id):
        return AbortResult.ALREADY_COMPLETE

    try:
        process.terminate()
        logger.info(f"Sent SIGTERM to process for job {conversion_id}")
    except OSError as e:
        logger.warning(f"SIGTERM failed for job {conversion_id}, trying SIGKILL: {e}")
        try:
            process.kill()
        except OSError as kill_error:
            logger.error(f"Failed to stop FFmpeg process for job {conversion_id}: {kill_error}")
            if store.clear_abort_request(conversion_id):
                return AbortResult.SIGNAL_ERROR
            # 进程已自行退出，监管线程已按中止标记写入最终状态
            status = store.get(conversion_id)
            if status is not None and status.aborted:
                return AbortResult.OK
            return AbortResult.ALREADY_COMPLETE

    logger.info(f"Conversion abort request processed for job {conversion_id}")
    return AbortResult.OK
