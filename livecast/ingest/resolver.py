"""
推流密钥解析

推流服务器描述推流会话的形式取决于通知的来源：流路径、查询参数集合或会话对象。
解析器按固定顺序尝试各来源，返回第一个找到的密钥，找不到时返回 None。
"""

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple

LIVE_KEY_PATTERN = re.compile(r"/live/([0-9A-Za-z_-]{6,})")
MIN_FALLBACK_KEY_LENGTH = 6


def is_valid_identity(value: Any) -> bool:
    """密钥同时用作目录名，必须是单个普通路径段"""
    if not isinstance(value, str) or not value:
        return False
    if value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        return False
    return True


def key_from_stream_path(stream_path: Any) -> Optional[str]:
    """取 ``/app/key`` 形式路径的最后一个非空段

    Args:
        stream_path: 路径字符串

    Returns:
        密钥或 None
    """
    if not isinstance(stream_path, str) or not stream_path:
        return None
    parts = [part for part in stream_path.split("/") if part]
    if not parts:
        return None
    return parts[-1]


@dataclass(frozen=True)
class PathSource:
    """从流路径（``/live/<key>``）取密钥"""

    stream_path: Optional[str]
    name: str = field(default="path", init=False)

    def resolve(self) -> Optional[str]:
        return key_from_stream_path(self.stream_path)


@dataclass(frozen=True)
class ArgsSource:
    """从会话参数取密钥

    含有 ``/live/<token>`` 的值优先；否则取第一个长度超过 5 个字符的字符串值。
    """

    args: Optional[Mapping[str, Any]]
    name: str = field(default="args", init=False)

    def resolve(self) -> Optional[str]:
        if not self.args:
            return None
        fallback = None
        for value in self.args.values():
            if not isinstance(value, str):
                continue
            match = LIVE_KEY_PATTERN.search(value)
            if match:
                return match.group(1)
            if fallback is None and len(value) >= MIN_FALLBACK_KEY_LENGTH and is_valid_identity(value):
                fallback = value
        return fallback


@dataclass(frozen=True)
class MetadataSource:
    """从会话对象自身的字段取密钥"""

    metadata: Optional[Mapping[str, Any]]
    name: str = field(default="metadata", init=False)

    def resolve(self) -> Optional[str]:
        if not self.metadata:
            return None
        key = key_from_stream_path(self.metadata.get("streamPath"))
        if key:
            return key
        for field_name in ("streamName", "stream", "name"):
            value = self.metadata.get(field_name)
            if isinstance(value, str) and value:
                return value
        rtmp = self.metadata.get("rtmp")
        if isinstance(rtmp, Mapping):
            value = rtmp.get("streamName")
            if isinstance(value, str) and value:
                return value
        return None


class KeyResolver:
    """推流密钥解析器

    依次尝试路径、参数、元数据。不能用作目录名的候选值会被跳过。
    """

    def sources(
        self,
        stream_path: Optional[str],
        session_args: Optional[Mapping[str, Any]],
        session_metadata: Optional[Mapping[str, Any]],
    ) -> List[Any]:
        return [
            PathSource(stream_path),
            ArgsSource(session_args),
            MetadataSource(session_metadata),
        ]

    def resolve_with_source(
        self,
        stream_path: Optional[str] = None,
        session_args: Optional[Mapping[str, Any]] = None,
        session_metadata: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Optional[str], Optional[str]]:
        """解析密钥并返回其来源

        Args:
            stream_path: 例如 ``/live/abc123``
            session_args: 推流查询参数
            session_metadata: 会话对象字段

        Returns:
            (密钥, 来源名)，均未匹配时为 (None, None)
        """
        for source in self.sources(stream_path, session_args, session_metadata):
            key = source.resolve()
            if key and is_valid_identity(key):
                return key, source.name
        return None, None

    def resolve(
        self,
        stream_path: Optional[str] = None,
        session_args: Optional[Mapping[str, Any]] = None,
        session_metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        key, _ = self.resolve_with_source(stream_path, session_args, session_metadata)
        return key
