"""
生命周期桥接

把推流开始/结束通知转换为监管器的启动/停止调用。
"""

import logging
from typing import Optional

from livecast.transcode.config import LiveConfig
from livecast.transcode.ffmpeg import LadderPlanner
from livecast.transcode.manager import ProcessSupervisor, StartOutcome, StopOutcome

from .notifier import IngestNotifier, IngestSession, PRE_PUBLISH, POST_PUBLISH, DONE_PUBLISH
from .resolver import KeyResolver

logger = logging.getLogger(__name__)


class LifecycleBridge:
    """连接推流通知与进程监管器

    无法解析密钥的会话记录日志后忽略，不会用猜测的密钥启动或停止任何编码。
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        planner: LadderPlanner,
        config: LiveConfig,
        resolver: Optional[KeyResolver] = None,
    ):
        self.supervisor = supervisor
        self.planner = planner
        self.config = config
        self.resolver = resolver or KeyResolver()

    def attach(self, notifier: IngestNotifier) -> 'LifecycleBridge':
        notifier.on(PRE_PUBLISH, self.on_pre_publish)
        notifier.on(POST_PUBLISH, self.on_post_publish)
        notifier.on(DONE_PUBLISH, self.on_done_publish)
        return self

    def _resolve(self, event: str, session: IngestSession) -> Optional[str]:
        key, source = self.resolver.resolve_with_source(
            session.stream_path, session.args, session.metadata
        )
        if key is None:
            logger.warning(f"{event}: could not resolve stream key, skipping {session.summary()}")
            return None
        logger.debug(f"{event}: resolved key {key} from {source}")
        return key

    def on_pre_publish(self, session: IngestSession) -> None:
        logger.info(f"pre_publish {session.summary()}")

    def on_post_publish(self, session: IngestSession) -> Optional[StartOutcome]:
        """推流开始：规划并启动编码

        Args:
            session: 推流会话

        Returns:
            StartOutcome，无法解析密钥时为 None
        """
        logger.info(f"post_publish {session.summary()}")
        key = self._resolve(POST_PUBLISH, session)
        if key is None:
            return None

        invocation = self.planner.plan(self.config.ladder, key)
        logger.info(f"Starting transcode for key={key}")
        return self.supervisor.start(key, invocation)

    def on_done_publish(self, session: IngestSession) -> Optional[StopOutcome]:
        """推流结束：停止编码

        Args:
            session: 推流会话

        Returns:
            StopOutcome，无法解析密钥时为 None
        """
        logger.info(f"done_publish {session.summary()}")
        key = self._resolve(DONE_PUBLISH, session)
        if key is None:
            return None

        logger.info(f"Stopping transcode for key={key}")
        return self.supervisor.stop(key, reason="publish_done")
