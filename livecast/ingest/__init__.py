"""
推流生命周期模块

从推流会话中解析推流密钥，并根据推流开始/结束通知驱动转码监管器。
"""

from .resolver import KeyResolver, is_valid_identity
from .notifier import IngestNotifier, IngestSession, PRE_PUBLISH, POST_PUBLISH, DONE_PUBLISH
from .bridge import LifecycleBridge

__all__ = [
    'KeyResolver',
    'is_valid_identity',
    'IngestNotifier',
    'IngestSession',
    'PRE_PUBLISH',
    'POST_PUBLISH',
    'DONE_PUBLISH',
    'LifecycleBridge',
]
