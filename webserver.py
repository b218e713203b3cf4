#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import atexit
import logging
from logging.handlers import TimedRotatingFileHandler

from flask import Flask, jsonify
from flask_cors import CORS

from livecast.transcode import (
    get_live_config,
    LadderPlanner,
    FFmpegRunner,
    OutputDirectoryManager,
    PlaylistComposer,
    ProcessSupervisor,
)
from livecast.transcode import api as live_api
from livecast.ingest import IngestNotifier, KeyResolver, LifecycleBridge
from livecast.ingest import hooks as ingest_hooks

# Configuration file path
CONFIG_FILE = os.environ.get("LIVECAST_CONFIG", "config/config.json")

DEFAULT_CONFIG = {
    "live": {
        "rtmp_host": "127.0.0.1",
        "rtmp_port": 1935,
        "rtmp_app": "live",
        "http_port": 8100,
        "public_base_url": "",
        "media_root": "media",
        "mode": "transcode",
        "segment_duration": 2,
        "playlist_size": 3,
        "input_frame_rate": 30,
        "x264_preset": "veryfast",
        "ffmpeg_path": "ffmpeg",
        "loglevel": "warning",
        "kill_timeout": 0,
        "ladder": [
            {"label": "480", "width": 852, "height": 480, "video_bitrate": 1000,
             "maxrate": 1200, "bufsize": 2000, "audio_bitrate": 96},
            {"label": "720", "width": 1280, "height": 720, "video_bitrate": 2500,
             "maxrate": 3000, "bufsize": 5000, "audio_bitrate": 128},
            {"label": "1080", "width": 1920, "height": 1080, "video_bitrate": 5000,
             "maxrate": 6000, "bufsize": 10000, "audio_bitrate": 128},
        ],
    }
}


def configure_logging(log_dir='logs'):
    """Console logging plus a daily rotating file under log_dir"""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    # Quieter third-party modules
    for module in ['urllib3', 'werkzeug']:
        logging.getLogger(module).setLevel(logging.WARNING)

    os.makedirs(log_dir, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'webserver.log'),
        when='midnight',
        interval=1,
        backupCount=3  # keep 3 days of logs
    )
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
    file_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(file_handler)


def load_config(config_file=CONFIG_FILE):
    """Load configuration file

    Missing sections fall back to DEFAULT_CONFIG; a missing file is created
    with the defaults.
    """
    config = json.loads(json.dumps(DEFAULT_CONFIG))
    try:
        if os.path.exists(config_file):
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
                config.update(loaded_config)
                logging.info(f"Loaded configuration file: {config_file}")
        else:
            os.makedirs(os.path.dirname(config_file) or '.', exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
                logging.info(f"Created default configuration file: {config_file}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    return config


def create_app(app_config=None):
    """Build the Flask application and wire the live pipeline

    Args:
        app_config: configuration dict, loaded from CONFIG_FILE when omitted

    Returns:
        Flask app; the wired components are in app.extensions['livecast']
    """
    if app_config is None:
        app_config = load_config()
    live_config = get_live_config(app_config)

    output_manager = OutputDirectoryManager(live_config)
    supervisor = ProcessSupervisor(live_config, output_manager=output_manager, runner=FFmpegRunner())
    planner = LadderPlanner(live_config)
    composer = PlaylistComposer()
    notifier = IngestNotifier()
    bridge = LifecycleBridge(supervisor, planner, live_config, resolver=KeyResolver()).attach(notifier)

    os.makedirs(live_config.media_root, exist_ok=True)

    app = Flask(__name__)
    CORS(app)  # Enable CORS

    app.extensions['livecast'] = {
        'config': live_config,
        'supervisor': supervisor,
        'planner': planner,
        'notifier': notifier,
        'bridge': bridge,
        'output_manager': output_manager,
    }

    @app.route("/", methods=["GET"])
    def home():
        return jsonify({
            "message": "livecast is running",
            "rtmp": f"rtmp://<SERVER_IP>:{live_config.rtmp_port}/{live_config.rtmp_app}/<STREAM_KEY>",
            "master": "/stream/<STREAM_KEY>/master.m3u8",
        })

    live_api.register_routes(app, live_config, supervisor, output_manager, composer)
    ingest_hooks.register_routes(app, notifier)

    return app


def main():
    """Run the HTTP server (ingest hooks, API, media)"""
    configure_logging()
    app = create_app()
    live_config = app.extensions['livecast']['config']
    atexit.register(app.extensions['livecast']['supervisor'].shutdown)

    logging.info(f"HTTP: http://0.0.0.0:{live_config.http_port}/")
    logging.info(f"RTMP ingest (OBS): rtmp://<SERVER_IP>:{live_config.rtmp_port}/{live_config.rtmp_app}/<STREAM_KEY>")
    logging.info(f"Media root: {os.path.abspath(live_config.media_root)} served at /media/")
    logging.info(f"Master playlist endpoint: http://0.0.0.0:{live_config.http_port}/stream/<streamKey>/master.m3u8")
    try:
        app.run(host='0.0.0.0', port=live_config.http_port, debug=False, threaded=True)
    except OSError as e:
        logging.error(f"Failed to start HTTP server: {e}")
        sys.exit(1)


# Start the server
if __name__ == '__main__':
    main()
