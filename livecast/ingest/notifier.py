"""
推流生命周期通知

服务的推流侧：接收推流回调的组件在此发出事件，关心的组件注册处理函数。
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PRE_PUBLISH = "pre_publish"
POST_PUBLISH = "post_publish"
DONE_PUBLISH = "done_publish"

EVENTS = (PRE_PUBLISH, POST_PUBLISH, DONE_PUBLISH)


@dataclass
class IngestSession:
    """推流服务器提供的单次推流会话信息"""

    session_id: Optional[str] = None
    stream_path: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "stream_path": self.stream_path,
            "args": self.args,
            "stream_name": self.metadata.get("streamName"),
        }


Handler = Callable[[IngestSession], Any]


class IngestNotifier:
    """推流生命周期事件中心

    处理函数出错只记录日志，不影响发送方和其他处理函数。
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {event: [] for event in EVENTS}
        self._lock = threading.Lock()

    def on(self, event: str, handler: Handler) -> None:
        """注册处理函数

        Args:
            event: EVENTS 之一
            handler: 以 IngestSession 为参数调用
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown ingest event {event!r}")
        with self._lock:
            self._handlers[event].append(handler)

    def emit(self, event: str, session: IngestSession) -> int:
        """向处理函数分发事件

        Args:
            event: EVENTS 之一
            session: 推流会话

        Returns:
            未抛出异常的处理函数数量
        """
        with self._lock:
            handlers = list(self._handlers.get(event, ()))

        delivered = 0
        for handler in handlers:
            try:
                handler(session)
                delivered += 1
            except Exception:
                logger.exception(f"Ingest handler for {event} failed")
        return delivered
