"""
编码进程监管器

负责 密钥 -> 任务 的登记表以及每个 ffmpeg 进程的生命周期：
- 同一密钥只启动一次
- 优雅停止，不等待进程退出
- 观察进程退出并清理登记
"""

import threading
import logging
from collections import deque
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import LiveConfig
from .job import EncodeJob, JobStatus
from .ffmpeg import EncodeInvocation, FFmpegRunner
from .output import OutputDirectoryManager

logger = logging.getLogger(__name__)

# 包含这些字样的 ffmpeg stderr 行以 WARNING 级别输出
_NOISY_MARKERS = ("error", "failed", "refused", "timed out", "could not", "invalid", "no such")


class StartOutcome(Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    SPAWN_FAILED = "spawn_failed"


class StopOutcome(Enum):
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLocks:
    """按键分配的锁

    不同键的操作互不等待，只有下面的短暂查找是共享的。每个条目记录持有者与
    等待者的数量，归零时即删除，锁表大小只取决于正在进行的操作。
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str):
        """在 key 的锁内执行

        Args:
            key: 锁的键
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class JobRegistry:
    """密钥 -> EncodeJob

    写入方必须持有 KeyedLocks 中该密钥的锁；内部锁只保证字典本身对读取方一致。
    """

    def __init__(self):
        self._jobs: Dict[str, EncodeJob] = {}
        self._lock = threading.Lock()

    def get(self, identity: str) -> Optional[EncodeJob]:
        with self._lock:
            return self._jobs.get(identity)

    def add(self, job: EncodeJob) -> None:
        with self._lock:
            self._jobs[job.identity] = job

    def remove(self, identity: str, job: Optional[EncodeJob] = None) -> Optional[EncodeJob]:
        """注销密钥

        Args:
            identity: 推流密钥
            job: 仅当登记的正是这个任务时才删除

        Returns:
            被删除的任务，未删除时为 None
        """
        with self._lock:
            current = self._jobs.get(identity)
            if current is None or (job is not None and current is not job):
                return None
            del self._jobs[identity]
            return current

    def snapshot(self) -> List[EncodeJob]:
        with self._lock:
            return list(self._jobs.values())

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return identity in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class ProcessSupervisor:
    """编码进程监管器

    每个密钥最多一个任务。同一密钥的启动、停止和退出处理由该密钥的锁串行化，
    不同密钥并行进行。
    """

    def __init__(
        self,
        config: LiveConfig,
        output_manager: Optional[OutputDirectoryManager] = None,
        runner: Optional[FFmpegRunner] = None,
        registry: Optional[JobRegistry] = None,
    ):
        """初始化监管器

        Args:
            config: 直播配置
            output_manager: 准备单路流目录
            runner: 启动进程并发送信号
            registry: 任务登记表，默认新建
        """
        self.config = config
        self.output_manager = output_manager or OutputDirectoryManager(config)
        self.runner = runner or FFmpegRunner()
        self.registry = registry or JobRegistry()
        self._locks = KeyedLocks()

    def start(self, identity: str, invocation: EncodeInvocation) -> StartOutcome:
        """开始编码一路流

        密钥已有任务时再次启动不做任何事：不启动新进程，也不清空目录。

        Args:
            identity: 推流密钥
            invocation: 规划好的编码

        Returns:
            StartOutcome
        """
        with self._locks.hold(identity):
            existing = self.registry.get(identity)
            if existing is not None:
                logger.info(f"Encode for {identity} already running (PID {existing.pid}), ignoring start")
                return StartOutcome.ALREADY_RUNNING

            job = EncodeJob(
                identity=identity,
                ladder=list(invocation.ladder),
                output_dir=invocation.output_dir,
                mode=invocation.mode,
                stderr_tail=deque(maxlen=max(1, self.config.stderr_tail_lines)),
            )

            # 新进程写入前目录必须已清空
            job.output_dir = self.output_manager.prepare(identity)

            logger.info(f"Starting ffmpeg for {identity}: "
                        f"{self.runner.get_command_line_string(invocation.command)}")
            process = self.runner.start_process(invocation)
            if process is None:
                job.mark_terminated(error="Failed to start ffmpeg process")
                job.ended.set()
                logger.error(f"Encode for {identity} not started, identity released")
                return StartOutcome.SPAWN_FAILED

            job.process = process
            job.mark_running()
            self.registry.add(job)

            watcher = threading.Thread(
                target=self._watch,
                args=(job,),
                daemon=True,
                name=f"EncodeWatch-{identity[:16]}"
            )
            watcher.start()

            logger.info(f"Encode for {identity} running with {len(job.ladder)} rendition(s) -> {job.output_dir}")
            return StartOutcome.STARTED

    def stop(self, identity: str, reason: str = "publish_done") -> StopOutcome:
        """停止编码一路流

        发送优雅退出信号并立即注销，进程退出由任务的监视线程稍后处理。

        Args:
            identity: 推流密钥
            reason: 停止原因

        Returns:
            StopOutcome
        """
        with self._locks.hold(identity):
            job = self.registry.remove(identity)
            if job is None:
                logger.info(f"No encode running for {identity}, nothing to stop")
                return StopOutcome.NOT_RUNNING

            job.mark_stopping(reason)
            if job.process is not None:
                self.runner.interrupt(job.process)
                if self.config.kill_timeout > 0:
                    timer = threading.Timer(self.config.kill_timeout, self._escalate, args=(job,))
                    timer.daemon = True
                    timer.start()

            logger.info(f"Stopping encode for {identity} (PID {job.pid}, {reason})")
            return StopOutcome.STOPPED

    def _escalate(self, job: EncodeJob) -> None:
        if job.process is not None and job.process.poll() is None:
            logger.warning(f"ffmpeg for {job.identity} (PID {job.pid}) still alive "
                           f"{self.config.kill_timeout:g}s after stop, killing")
            self.runner.kill(job.process)

    def _watch(self, job: EncodeJob) -> None:
        """读取进程 stderr，等待退出后上报结束

        Args:
            job: 要监视的任务
        """
        stream_logger = logging.getLogger(f"livecast.ffmpeg.{job.identity}")
        process = job.process
        try:
            if process.stderr is not None:
                for line in process.stderr:
                    line = line.rstrip()
                    if not line:
                        continue
                    job.stderr_tail.append(line)
                    lowered = line.lower()
                    if any(marker in lowered for marker in _NOISY_MARKERS):
                        stream_logger.warning(line)
                    else:
                        stream_logger.debug(line)
        except (OSError, ValueError) as e:
            logger.warning(f"Error reading ffmpeg output for {job.identity}: {e}")

        exit_code = process.wait()
        self._on_exit(job, exit_code)

    def _on_exit(self, job: EncodeJob, exit_code: int) -> None:
        """在该密钥的串行区内处理进程退出

        Args:
            job: 进程已结束的任务
            exit_code: 进程返回码
        """
        with self._locks.hold(job.identity):
            requested = job.status == JobStatus.STOPPING
            job.mark_terminated(exit_code)
            released = self.registry.remove(job.identity, job) is not None

            if exit_code == 0:
                logger.info(f"ffmpeg for {job.identity} exited cleanly")
            elif requested:
                logger.warning(f"ffmpeg for {job.identity} exited with code {exit_code} after stop")
            else:
                job.error = f"ffmpeg exited with code {exit_code}"
                logger.error(f"ffmpeg for {job.identity} exited unexpectedly with code {exit_code}")
                for line in job.stderr_tail:
                    logger.error(f"[ffmpeg {job.identity}] {line}")

            if released:
                logger.info(f"Identity {job.identity} released")
        job.ended.set()

    def get_job(self, identity: str) -> Optional[EncodeJob]:
        return self.registry.get(identity)

    def is_running(self, identity: str) -> bool:
        return identity in self.registry

    def identities(self) -> List[str]:
        return sorted(job.identity for job in self.registry.snapshot())

    def get_all_jobs(self) -> List[Dict[str, Any]]:
        """获取所有已登记任务

        Returns:
            按密钥排序的任务字典列表
        """
        jobs = sorted(self.registry.snapshot(), key=lambda job: job.identity)
        return [job.to_dict() for job in jobs]

    def get_status_summary(self) -> Dict[str, Any]:
        return {
            "active_jobs": len(self.registry),
            "mode": self.config.mode,
            "renditions": [rung.label for rung in self.config.ladder],
        }

    def shutdown(self, timeout: float = 5.0) -> None:
        """停止所有任务，并短暂等待进程退出

        Args:
            timeout: 每个进程的等待秒数，超时后强制结束
        """
        jobs = self.registry.snapshot()
        for job in jobs:
            self.stop(job.identity, reason="shutdown")
        for job in jobs:
            if not job.ended.wait(timeout) and job.process is not None:
                logger.warning(f"ffmpeg for {job.identity} did not exit in {timeout:g}s, killing")
                self.runner.kill(job.process)
