"""
推流服务器 HTTP 回调

nginx-rtmp（``on_publish`` / ``on_publish_done``，表单）和 SRS
（``on_publish`` / ``on_unpublish``，JSON）通过 HTTP 上报推流事件。
这些路由把两者都转换为 IngestNotifier 事件，这里从不拒绝推流。
"""

import logging
from typing import Any, Dict
from urllib.parse import parse_qsl

from flask import Response, request

from .notifier import IngestNotifier, IngestSession, PRE_PUBLISH, POST_PUBLISH, DONE_PUBLISH

logger = logging.getLogger(__name__)

# nginx-rtmp / SRS 发送的协议字段，其余均视为推流参数
_PROTOCOL_FIELDS = {
    "action", "call", "app", "name", "stream", "stream_url", "stream_id",
    "addr", "ip", "clientid", "client_id", "server_id", "service_id",
    "vhost", "tcurl", "tcUrl", "swfurl", "pageurl", "flashver", "type",
    "param", "path", "stream_path",
}


def _read_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form.to_dict()
    merged = request.args.to_dict()
    merged.update(payload)
    return merged


def session_from_payload(payload: Dict[str, Any]) -> IngestSession:
    """根据回调内容构建 IngestSession

    Args:
        payload: 合并后的查询/表单/JSON 字段

    Returns:
        IngestSession
    """
    app_name = payload.get("app") or ""
    stream_name = payload.get("name") or payload.get("stream") or ""

    stream_path = payload.get("stream_url") or payload.get("stream_path") or payload.get("path")
    if not stream_path and stream_name:
        stream_path = f"/{app_name}/{stream_name}" if app_name else f"/{stream_name}"

    args = {
        key: value for key, value in payload.items()
        if key not in _PROTOCOL_FIELDS
    }
    # SRS 把推流查询串作为一个 "?a=b&c=d" 值传入
    param = payload.get("param")
    if isinstance(param, str) and param:
        args.update(dict(parse_qsl(param.lstrip("?"))))

    metadata = {
        "app": app_name,
        "tcUrl": payload.get("tcurl") or payload.get("tcUrl"),
        "addr": payload.get("addr") or payload.get("ip"),
    }
    if stream_name:
        metadata["streamName"] = stream_name
        metadata["rtmp"] = {"streamName": stream_name}

    session_id = payload.get("clientid") or payload.get("client_id")
    return IngestSession(
        session_id=str(session_id) if session_id is not None else None,
        stream_path=stream_path or None,
        args=args,
        metadata=metadata,
    )


def _ack() -> Response:
    # SRS 要求响应体为 "0"，nginx-rtmp 只看状态码
    return Response("0", status=200, mimetype="text/plain")


def register_routes(app, notifier: IngestNotifier):
    """注册推流回调路由

    Args:
        app: Flask 应用
        notifier: 回调事件发往的事件中心
    """

    @app.route('/hooks/on_publish', methods=['POST'])
    def ingest_on_publish():
        session = session_from_payload(_read_payload())
        notifier.emit(PRE_PUBLISH, session)
        notifier.emit(POST_PUBLISH, session)
        return _ack()

    @app.route('/hooks/on_publish_done', methods=['POST'])
    @app.route('/hooks/on_unpublish', methods=['POST'])
    def ingest_on_publish_done():
        session = session_from_payload(_read_payload())
        notifier.emit(DONE_PUBLISH, session)
        return _ack()
