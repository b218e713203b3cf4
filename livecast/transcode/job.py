"""
编码任务数据模型

定义监管器为每路活跃流保存的运行时记录。
"""

import time
import threading
from collections import deque
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional
from subprocess import Popen

from .config import RenditionSpec


class JobStatus(Enum):
    """任务状态"""
    STARTING = "starting"      # 正在准备目录，进程尚未启动
    RUNNING = "running"        # ffmpeg 已启动并登记
    STOPPING = "stopping"      # 已发送 SIGINT，等待进程退出
    TERMINATED = "terminated"  # 进程已退出或从未启动


@dataclass
class EncodeJob:
    """编码任务

    由 ProcessSupervisor 持有，其他组件不修改它。
    """

    identity: str
    ladder: List[RenditionSpec]
    output_dir: str
    mode: str = "transcode"

    status: JobStatus = JobStatus.STARTING
    error: Optional[str] = None

    process: Optional[Popen] = None
    exit_code: Optional[int] = None

    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    ended_at: Optional[float] = None

    stderr_tail: Deque[str] = field(default_factory=lambda: deque(maxlen=50))
    ended: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def mark_running(self):
        self.status = JobStatus.RUNNING
        if self.started_at is None:
            self.started_at = time.time()

    def mark_stopping(self, reason: str = "stop"):
        """标记为停止中

        Args:
            reason: 停止原因
        """
        self.status = JobStatus.STOPPING
        self.error = reason

    def mark_terminated(self, exit_code: Optional[int] = None, error: Optional[str] = None):
        """标记为已结束

        Args:
            exit_code: 进程退出码，进程从未启动时为 None
            error: 失败描述
        """
        self.status = JobStatus.TERMINATED
        self.exit_code = exit_code
        if error:
            self.error = error
        self.ended_at = time.time()

    def is_active(self) -> bool:
        return self.status in (JobStatus.STARTING, JobStatus.RUNNING)

    def get_uptime(self) -> float:
        """进程启动至今的秒数"""
        if self.started_at is None:
            return 0
        end_time = self.ended_at or time.time()
        return end_time - self.started_at

    def to_dict(self, include_internal: bool = False) -> Dict[str, Any]:
        """转换为字典（用于 API 响应）

        Args:
            include_internal: 是否包含输出目录和 stderr 尾部

        Returns:
            字典表示
        """
        result = {
            "identity": self.identity,
            "mode": self.mode,
            "status": self.status.value,
            "active": self.is_active(),
            "renditions": [rung.label for rung in self.ladder],
            "pid": self.pid,
            "created_at": self.created_at,
            "uptime": round(self.get_uptime(), 3),
        }

        if self.started_at:
            result["started_at"] = self.started_at
        if self.ended_at:
            result["ended_at"] = self.ended_at
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.error:
            result["error"] = self.error

        if include_internal:
            result["output_dir"] = self.output_dir
            result["stderr_tail"] = list(self.stderr_tail)

        return result
