"""
FFmpeg 编码规划与进程启动

LadderPlanner 把码率阶梯转换为声明式的 EncodeInvocation，
FFmpegRunner 供监管器据此启动进程。
"""

import os
import signal
import subprocess
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .config import LiveConfig, RenditionSpec, MODE_PASSTHROUGH, MODE_TRANSCODE

logger = logging.getLogger(__name__)


@dataclass
class EncodeInvocation:
    """执行一次编码所需的全部信息，以及它将产出的文件

    ``playlists`` 与 ``segment_patterns`` 以档位标签为键，构成预期的输出文件集合。
    """

    identity: str
    input_locator: str
    mode: str
    ladder: List[RenditionSpec]
    output_dir: str
    command: List[str]
    playlists: Dict[str, str] = field(default_factory=dict)
    segment_patterns: Dict[str, str] = field(default_factory=dict)

    @property
    def is_passthrough(self) -> bool:
        return self.mode == MODE_PASSTHROUGH


class LadderPlanner:
    """码率阶梯规划器

    为直通或多档转码构建 ffmpeg 参数列表。输入只解码一次，
    每一档输出一路 HLS。
    """

    def __init__(self, config: LiveConfig):
        """初始化规划器

        Args:
            config: 直播配置（切片时长、GOP、编码参数）
        """
        self.config = config

    def plan(
        self,
        ladder: Sequence[RenditionSpec],
        identity: str,
        input_locator: Optional[str] = None
    ) -> EncodeInvocation:
        """规划单路流的编码

        Args:
            ladder: 要输出的档位
            identity: 推流密钥
            input_locator: ffmpeg 读取直播输入的地址，默认为本机 RTMP 服务的
                ``/<app>/<identity>``

        Returns:
            EncodeInvocation
        """
        ladder = list(ladder)
        if not ladder:
            raise ValueError("Cannot plan an encode without renditions")

        passthrough = any(rung.is_passthrough for rung in ladder)
        if passthrough and len(ladder) != 1:
            raise ValueError("Pass-through takes exactly one rendition")

        if input_locator is None:
            input_locator = self.config.get_input_locator(identity)

        output_dir = self.config.get_output_dir(identity)
        playlists = {}
        segment_patterns = {}

        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", self.config.loglevel,
            "-y",
            "-fflags", "+genpts",
            "-i", input_locator,
        ]

        for rung in ladder:
            playlist_path = self.config.get_playlist_path(identity, rung)
            segment_pattern = self.config.get_segment_pattern(identity, rung)
            playlists[rung.label] = playlist_path
            segment_patterns[rung.label] = segment_pattern

            # 选项作用于紧随其后的输出
            cmd.extend(["-map", "0:v:0", "-map", "0:a:0?"])
            if rung.is_passthrough:
                cmd.extend(["-c:v", "copy", "-c:a", "copy"])
            else:
                cmd.extend(self._get_video_params(rung))
                cmd.extend(self._get_audio_params(rung))
            cmd.extend(self._get_hls_params(segment_pattern))
            cmd.append(playlist_path)

        return EncodeInvocation(
            identity=identity,
            input_locator=input_locator,
            mode=MODE_PASSTHROUGH if passthrough else MODE_TRANSCODE,
            ladder=ladder,
            output_dir=output_dir,
            command=cmd,
            playlists=playlists,
            segment_patterns=segment_patterns,
        )

    def _get_video_params(self, rung: RenditionSpec) -> List[str]:
        """单档视频编码参数

        输出尺寸固定为档位分辨率：等比缩放后居中补边，与主播放列表声明的
        RESOLUTION 一致。

        Args:
            rung: 档位

        Returns:
            参数列表
        """
        params = [
            "-vf",
            f"scale=w={rung.width}:h={rung.height}"
            ":force_original_aspect_ratio=decrease:force_divisible_by=2,"
            f"pad={rung.width}:{rung.height}:(ow-iw)/2:(oh-ih)/2,setsar=1",
            "-c:v", rung.video_codec,
        ]

        if "x264" in rung.video_codec.lower():
            params.extend(["-preset", self.config.x264_preset])

        if rung.video_bitrate:
            params.extend(["-b:v", f"{rung.video_bitrate}k"])
        if rung.maxrate:
            params.extend(["-maxrate", f"{rung.maxrate}k"])
        if rung.bufsize:
            params.extend(["-bufsize", f"{rung.bufsize}k"])

        # 每个切片边界都是关键帧
        gop = self.config.effective_gop_size
        params.extend(["-g", str(gop)])
        params.extend(["-keyint_min", str(gop)])
        params.extend(["-sc_threshold", "0"])
        params.extend(["-force_key_frames", f"expr:gte(t,n_forced*{self.config.segment_duration})"])
        params.extend(["-pix_fmt", "yuv420p"])

        return params

    def _get_audio_params(self, rung: RenditionSpec) -> List[str]:
        params = ["-c:a", rung.audio_codec]
        if rung.audio_bitrate:
            params.extend(["-b:a", f"{rung.audio_bitrate}k"])
        if self.config.audio_channels:
            params.extend(["-ac", str(self.config.audio_channels)])
        if self.config.audio_sample_rate:
            params.extend(["-ar", str(self.config.audio_sample_rate)])
        return params

    def _get_hls_params(self, segment_pattern: str) -> List[str]:
        """HLS 封装参数

        切片器自行清理滑动窗口之外的切片（delete_segments）。

        Args:
            segment_pattern: 切片文件名模式

        Returns:
            参数列表
        """
        return [
            "-f", "hls",
            "-hls_time", str(self.config.segment_duration),
            "-hls_list_size", str(self.config.playlist_size),
            "-hls_flags", "delete_segments+independent_segments",
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", segment_pattern,
        ]


class FFmpegRunner:
    """启动编码进程并向其发送信号"""

    def start_process(self, invocation: EncodeInvocation) -> Optional[subprocess.Popen]:
        """启动 FFmpeg

        参数列表原样传入，不经过 shell。stderr 通过管道交给监管器的监视线程读取。

        Args:
            invocation: 规划好的编码

        Returns:
            subprocess.Popen，无法启动时返回 None
        """
        try:
            process = subprocess.Popen(
                invocation.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=(os.name == "posix"),
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start ffmpeg for {invocation.identity}: {e}")
            return None

        logger.info(f"Started ffmpeg for {invocation.identity} with PID {process.pid}")
        return process

    def interrupt(self, process: subprocess.Popen) -> None:
        """请求进程结束（SIGINT 让 ffmpeg 正常收尾播放列表）"""
        try:
            if os.name == "posix":
                process.send_signal(signal.SIGINT)
            else:
                process.terminate()
        except OSError as e:
            logger.warning(f"Failed to signal PID {process.pid}: {e}")

    def kill(self, process: subprocess.Popen) -> None:
        try:
            process.kill()
        except OSError as e:
            logger.warning(f"Failed to kill PID {process.pid}: {e}")

    def get_command_line_string(self, command: List[str]) -> str:
        """获取命令行字符串（用于日志）

        Args:
            command: ffmpeg 参数列表

        Returns:
            以空格连接的命令行
        """
        return " ".join(command)
