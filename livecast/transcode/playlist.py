"""
HLS 主播放列表生成器

根据配置的码率阶梯生成变体选择列表。各档自身的媒体播放列表由 ffmpeg 写出。
"""

from typing import List, Sequence

from .config import RenditionSpec

# 直通模式在推流到达前无法得知源码率，使用固定值
PASSTHROUGH_BANDWIDTH = 5000000
DEFAULT_AUDIO_KBPS = 128


class PlaylistComposer:
    """主播放列表生成器"""

    def __init__(self, version: int = 3):
        """初始化生成器

        Args:
            version: #EXT-X-VERSION 的值
        """
        self.version = version

    def compose_master(
        self,
        identity: str,
        ladder: Sequence[RenditionSpec],
        base_url: str,
    ) -> str:
        """生成主播放列表文本

        变体按带宽从低到高排列。

        Args:
            identity: 推流密钥
            ladder: 配置的档位
            base_url: 流目录对外提供的 URL，例如 ``http://host:8100/media``

        Returns:
            m3u8 文本
        """
        base = base_url.rstrip("/")
        lines = [
            "#EXTM3U",
            f"#EXT-X-VERSION:{self.version}",
        ]

        for rung in self.sort_by_bandwidth(ladder):
            attributes = [f"BANDWIDTH={self.get_bandwidth(rung)}"]
            if rung.resolution:
                attributes.append(f"RESOLUTION={rung.resolution}")
            lines.append(f"#EXT-X-STREAM-INF:{','.join(attributes)}")
            lines.append(f"{base}/{identity}/{rung.playlist_name}")

        return "\n".join(lines) + "\n"

    def sort_by_bandwidth(self, ladder: Sequence[RenditionSpec]) -> List[RenditionSpec]:
        return sorted(ladder, key=self.get_bandwidth)

    def get_bandwidth(self, rung: RenditionSpec) -> int:
        """估算单档峰值带宽（bit/s）

        Args:
            rung: 档位

        Returns:
            每秒比特数
        """
        if rung.bandwidth:
            return rung.bandwidth
        if rung.is_passthrough:
            return PASSTHROUGH_BANDWIDTH
        video_kbps = rung.maxrate or rung.video_bitrate or 0
        audio_kbps = rung.audio_bitrate if rung.audio_bitrate is not None else DEFAULT_AUDIO_KBPS
        return (video_kbps + audio_kbps) * 1000

