"""
直播转码配置

定义直播服务的各项参数、码率阶梯及其默认值。
所有配置在进程启动时读取一次。
"""

import os
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


MODE_TRANSCODE = "transcode"
MODE_PASSTHROUGH = "passthrough"

PASSTHROUGH_LABEL = "source"
PASSTHROUGH_PLAYLIST = "index.m3u8"


class ConfigError(ValueError):
    """直播配置不可用时抛出"""


@dataclass
class RenditionSpec:
    """码率阶梯中的一档

    码率单位为 kbit/s。视频编码为 ``copy`` 的一档即直通档，不带分辨率。
    """

    label: str
    width: Optional[int] = None
    height: Optional[int] = None
    video_bitrate: Optional[int] = None
    maxrate: Optional[int] = None
    bufsize: Optional[int] = None
    audio_bitrate: Optional[int] = 128
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    bandwidth: Optional[int] = None  # 主播放列表中声明的峰值带宽（bit/s）

    @property
    def is_passthrough(self) -> bool:
        return self.video_codec == "copy"

    @property
    def playlist_name(self) -> str:
        if self.is_passthrough:
            return PASSTHROUGH_PLAYLIST
        return f"{self.label}.m3u8"

    @property
    def segment_prefix(self) -> str:
        if self.is_passthrough:
            return os.path.splitext(PASSTHROUGH_PLAYLIST)[0]
        return self.label

    @property
    def resolution(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RenditionSpec':
        """从配置字典创建一档

        Args:
            data: 单档配置，例如 ``{"label": "720", "width": 1280, ...}``

        Returns:
            RenditionSpec 实例
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Ladder entry must be an object, got {type(data).__name__}")
        label = str(data.get("label") or "").strip()
        if not label:
            raise ConfigError("Ladder entry is missing 'label'")

        def _int(key: str) -> Optional[int]:
            value = data.get(key)
            if value is None or value == "":
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ConfigError(f"Ladder entry '{label}': '{key}' must be an integer, got {value!r}")

        return cls(
            label=label,
            width=_int("width"),
            height=_int("height"),
            video_bitrate=_int("video_bitrate"),
            maxrate=_int("maxrate"),
            bufsize=_int("bufsize"),
            audio_bitrate=_int("audio_bitrate"),
            video_codec=str(data.get("video_codec") or "libx264"),
            audio_codec=str(data.get("audio_codec") or "aac"),
            bandwidth=_int("bandwidth"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "width": self.width,
            "height": self.height,
            "video_bitrate": self.video_bitrate,
            "maxrate": self.maxrate,
            "bufsize": self.bufsize,
            "audio_bitrate": self.audio_bitrate,
            "video_codec": self.video_codec,
            "audio_codec": self.audio_codec,
            "bandwidth": self.bandwidth,
        }


def default_ladder() -> List[RenditionSpec]:
    """配置未指定时使用的 480/720/1080 阶梯"""
    return [
        RenditionSpec("480", 852, 480, video_bitrate=1000, maxrate=1200, bufsize=2000, audio_bitrate=96),
        RenditionSpec("720", 1280, 720, video_bitrate=2500, maxrate=3000, bufsize=5000, audio_bitrate=128),
        RenditionSpec("1080", 1920, 1080, video_bitrate=5000, maxrate=6000, bufsize=10000, audio_bitrate=128),
    ]


def passthrough_ladder() -> List[RenditionSpec]:
    return [RenditionSpec(PASSTHROUGH_LABEL, video_codec="copy", audio_codec="copy", audio_bitrate=None)]


@dataclass
class LiveConfig:
    """直播服务配置

    从应用配置的 ``live`` 段读取，缺省项使用默认值。
    """

    # 网络
    rtmp_host: str = "127.0.0.1"  # ffmpeg 拉流的 RTMP 地址
    rtmp_port: int = 1935
    rtmp_app: str = "live"
    http_port: int = 8100
    public_base_url: str = ""  # 为空时根据请求推导

    # 输出
    media_root: str = "media"
    mode: str = MODE_TRANSCODE
    ladder: List[RenditionSpec] = field(default_factory=default_ladder)

    # HLS
    segment_duration: int = 2  # 秒
    playlist_size: int = 3  # 每档滑动窗口保留的切片数

    # 关键帧：GOP 必须与切片边界对齐
    input_frame_rate: float = 30.0
    gop_size: Optional[int] = None  # 帧数，未设置时由帧率推导

    # 编码器
    ffmpeg_path: str = "ffmpeg"
    x264_preset: str = "veryfast"
    audio_channels: int = 2
    audio_sample_rate: int = 48000
    loglevel: str = "warning"

    # 进程监管
    kill_timeout: float = 0  # SIGINT 之后多少秒发送 SIGKILL，0 表示不发送
    stderr_tail_lines: int = 50

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'LiveConfig':
        """从应用配置创建 LiveConfig

        Args:
            app_config: 全局配置字典

        Returns:
            LiveConfig 实例
        """
        live_config = app_config.get("live", {}) or {}

        config = cls()

        for key in ("rtmp_host", "rtmp_app", "public_base_url", "media_root",
                    "ffmpeg_path", "x264_preset", "loglevel"):
            if key in live_config and live_config[key] is not None:
                setattr(config, key, str(live_config[key]))

        for key in ("rtmp_port", "http_port", "segment_duration", "playlist_size",
                    "audio_channels", "audio_sample_rate", "stderr_tail_lines"):
            if key in live_config and live_config[key] is not None:
                try:
                    setattr(config, key, int(live_config[key]))
                except (TypeError, ValueError):
                    raise ConfigError(f"'{key}' must be an integer, got {live_config[key]!r}")

        for key in ("input_frame_rate", "kill_timeout"):
            if key in live_config and live_config[key] is not None:
                try:
                    setattr(config, key, float(live_config[key]))
                except (TypeError, ValueError):
                    raise ConfigError(f"'{key}' must be a number, got {live_config[key]!r}")

        if live_config.get("gop_size"):
            try:
                config.gop_size = int(live_config["gop_size"])
            except (TypeError, ValueError):
                raise ConfigError(f"'gop_size' must be an integer, got {live_config['gop_size']!r}")

        if "mode" in live_config:
            config.mode = str(live_config["mode"] or MODE_TRANSCODE).lower()

        if config.mode == MODE_PASSTHROUGH:
            config.ladder = passthrough_ladder()
        elif live_config.get("ladder"):
            config.ladder = [RenditionSpec.from_dict(item) for item in live_config["ladder"]]

        return config

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> 'LiveConfig':
        """应用环境变量覆盖（LIVECAST_MEDIA_ROOT、LIVECAST_HTTP_PORT、LIVECAST_RTMP_PORT）"""
        environ = os.environ if environ is None else environ
        if environ.get("LIVECAST_MEDIA_ROOT"):
            self.media_root = environ["LIVECAST_MEDIA_ROOT"]
        for name, attr in (("LIVECAST_HTTP_PORT", "http_port"), ("LIVECAST_RTMP_PORT", "rtmp_port")):
            if environ.get(name):
                try:
                    setattr(self, attr, int(environ[name]))
                except ValueError:
                    raise ConfigError(f"{name} must be an integer, got {environ[name]!r}")
        return self

    @property
    def effective_gop_size(self) -> int:
        """GOP 长度（帧）

        由预期输入帧率推导，保证每个切片都从关键帧开始。
        """
        if self.gop_size:
            return self.gop_size
        return max(1, int(round(self.input_frame_rate * self.segment_duration)))

    def validate(self) -> 'LiveConfig':
        """校验配置，遇到第一个问题即抛出 ConfigError"""
        if self.mode not in (MODE_TRANSCODE, MODE_PASSTHROUGH):
            raise ConfigError(f"Unknown mode {self.mode!r}, expected '{MODE_TRANSCODE}' or '{MODE_PASSTHROUGH}'")
        if self.segment_duration <= 0:
            raise ConfigError("segment_duration must be positive")
        if self.playlist_size <= 0:
            raise ConfigError("playlist_size must be positive")
        if not self.ladder:
            raise ConfigError("ladder must contain at least one rendition")

        labels = [rung.label for rung in self.ladder]
        if len(set(labels)) != len(labels):
            raise ConfigError(f"Ladder labels must be unique: {labels}")
        for label in labels:
            if "/" in label or "\\" in label or label in (".", ".."):
                raise ConfigError(f"Ladder label {label!r} is not a valid file name")

        if self.mode == MODE_PASSTHROUGH:
            if len(self.ladder) != 1 or not self.ladder[0].is_passthrough:
                raise ConfigError("passthrough mode takes exactly one copy rung")
            return self

        for rung in self.ladder:
            if rung.is_passthrough:
                raise ConfigError(f"Rung '{rung.label}' uses copy in transcode mode")
            if not rung.resolution:
                raise ConfigError(f"Rung '{rung.label}' needs width and height")
            # yuv420p 要求宽高为偶数
            if rung.width % 2 or rung.height % 2:
                raise ConfigError(f"Rung '{rung.label}' size {rung.resolution} must have even width and height")
            if not rung.video_bitrate:
                raise ConfigError(f"Rung '{rung.label}' needs video_bitrate")

        if self.input_frame_rate <= 0:
            raise ConfigError("input_frame_rate must be positive")
        gop = self.effective_gop_size
        if gop <= 0:
            raise ConfigError("gop_size must be positive")
        frames_per_segment = self.input_frame_rate * self.segment_duration
        keyframes_per_segment = frames_per_segment / gop
        if round(keyframes_per_segment) < 1 or abs(keyframes_per_segment - round(keyframes_per_segment)) > 0.01:
            raise ConfigError(
                f"gop_size {gop} does not align with {self.segment_duration}s segments "
                f"at {self.input_frame_rate} fps ({frames_per_segment:g} frames per segment)"
            )
        return self

    def get_output_dir(self, identity: str) -> str:
        """获取单路流的输出目录

        Args:
            identity: 推流密钥

        Returns:
            ``<media_root>/<identity>``
        """
        return os.path.join(self.media_root, identity)

    def get_playlist_path(self, identity: str, rung: RenditionSpec) -> str:
        return os.path.join(self.get_output_dir(identity), rung.playlist_name)

    def get_segment_pattern(self, identity: str, rung: RenditionSpec) -> str:
        """交给 ffmpeg 的切片文件名模式，例如 ``media/abc/720_%d.ts``"""
        return os.path.join(self.get_output_dir(identity), f"{rung.segment_prefix}_%d.ts")

    def get_input_locator(self, identity: str) -> str:
        return f"rtmp://{self.rtmp_host}:{self.rtmp_port}/{self.rtmp_app}/{identity}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rtmp_port": self.rtmp_port,
            "rtmp_app": self.rtmp_app,
            "http_port": self.http_port,
            "media_root": self.media_root,
            "mode": self.mode,
            "segment_duration": self.segment_duration,
            "playlist_size": self.playlist_size,
            "gop_size": self.effective_gop_size,
            "ladder": [rung.to_dict() for rung in self.ladder],
        }


def get_live_config(app_config: dict) -> LiveConfig:
    """创建并校验直播配置

    Args:
        app_config: 全局配置字典

    Returns:
        校验通过的 LiveConfig
    """
    return LiveConfig.from_app_config(app_config).apply_env().validate()
