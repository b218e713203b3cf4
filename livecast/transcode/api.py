"""
直播 HTTP 接口

主播放列表、流状态、手动停止、密钥生成以及静态媒体目录。
"""

import os
import secrets
import logging

from flask import jsonify, request, send_from_directory, Response, abort

from livecast.ingest.resolver import is_valid_identity

from .config import LiveConfig
from .manager import ProcessSupervisor, StopOutcome
from .output import OutputDirectoryManager
from .playlist import PlaylistComposer

logger = logging.getLogger(__name__)

PLAYLIST_MIMETYPE = 'application/vnd.apple.mpegurl'
NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}


def register_routes(
    app,
    config: LiveConfig,
    supervisor: ProcessSupervisor,
    output_manager: OutputDirectoryManager,
    composer: PlaylistComposer,
):
    """注册直播相关路由

    Args:
        app: Flask 应用
        config: 直播配置
        supervisor: 进程监管器
        output_manager: 流目录管理器
        composer: 主播放列表生成器
    """
    media_root = os.path.abspath(config.media_root)

    def host_only() -> str:
        return (request.host or 'localhost').split(':')[0]

    def media_base_url() -> str:
        if config.public_base_url:
            return config.public_base_url.rstrip('/')
        return request.host_url.rstrip('/') + '/media'

    def stream_urls(identity: str) -> dict:
        base = media_base_url()
        urls = {"master": request.host_url.rstrip('/') + f"/stream/{identity}/master.m3u8"}
        for rung in config.ladder:
            urls[rung.label] = f"{base}/{identity}/{rung.playlist_name}"
        return urls

    def stream_entry(identity: str) -> dict:
        job = supervisor.get_job(identity)
        entry = {
            "key": identity,
            "active": job is not None,
            "urls": stream_urls(identity),
        }
        if job is not None:
            entry["job"] = job.to_dict()
        return entry

    @app.route('/stream/<identity>/master.m3u8', methods=['GET'])
    def live_master_playlist(identity):
        """获取主播放列表，列出所有配置的档位

        Args:
            identity: 推流密钥

        Returns:
            m3u8 文本
        """
        if not is_valid_identity(identity):
            abort(404)
        base = media_base_url()
        logger.debug(f"[master-request] host={request.host} key={identity} base={base}")
        playlist = composer.compose_master(identity, config.ladder, base)
        return Response(playlist, mimetype=PLAYLIST_MIMETYPE, headers=NO_CACHE_HEADERS)

    @app.route('/media/<path:filename>', methods=['GET'])
    def live_media(filename):
        """ffmpeg 写出的播放列表和切片"""
        if filename.endswith('.m3u8'):
            response = send_from_directory(media_root, filename, mimetype=PLAYLIST_MIMETYPE)
            response.headers.update(NO_CACHE_HEADERS)
            return response
        if filename.endswith('.ts'):
            return send_from_directory(media_root, filename, mimetype='video/mp2t')
        return send_from_directory(media_root, filename)

    @app.route('/api/streams', methods=['GET'])
    def live_streams():
        """流目录与正在运行的编码

        Returns:
            流列表，包含是否活跃及各 URL
        """
        identities = set(output_manager.list_streams()) | set(supervisor.identities())
        return jsonify([stream_entry(identity) for identity in sorted(identities)])

    @app.route('/api/streams/<identity>', methods=['GET'])
    def live_stream_detail(identity):
        if not is_valid_identity(identity):
            return jsonify({"error": "Invalid stream key"}), 400
        job = supervisor.get_job(identity)
        if job is None and identity not in output_manager.list_streams():
            return jsonify({"error": "Stream not found"}), 404
        entry = stream_entry(identity)
        if job is not None:
            entry["job"] = job.to_dict(include_internal=True)
        return jsonify(entry)

    @app.route('/api/streams/<identity>/stop', methods=['POST'])
    def live_stream_stop(identity):
        """停止一路流的编码

        Args:
            identity: 推流密钥

        Returns:
            结果 JSON，未在运行时返回 404
        """
        if not is_valid_identity(identity):
            return jsonify({"error": "Invalid stream key"}), 400
        outcome = supervisor.stop(identity, reason="manual")
        if outcome == StopOutcome.NOT_RUNNING:
            return jsonify({"error": "Stream not running", "key": identity}), 404
        return jsonify({
            "success": True,
            "key": identity,
            "status_summary": supervisor.get_status_summary(),
        })

    @app.route('/api/generate', methods=['GET'])
    def live_generate_key():
        """生成随机推流密钥及对应的 RTMP 推流地址"""
        key = secrets.token_hex(6)
        return jsonify({
            "streamKey": key,
            "rtmpUrl": f"rtmp://{host_only()}:{config.rtmp_port}/{config.rtmp_app}/{key}",
        })

    @app.route('/api/status', methods=['GET'])
    def live_status():
        summary = supervisor.get_status_summary()
        summary["identities"] = supervisor.identities()
        summary["config"] = config.to_dict()
        return jsonify(summary)
