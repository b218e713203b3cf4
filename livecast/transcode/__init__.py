"""
直播转码模块

为每路 RTMP 推流绑定一个 ffmpeg 进程，在 ``<media_root>/<推流密钥>/`` 下写出
HLS 码率阶梯。

- 每个推流密钥只有一个编码，重复启动会被忽略
- 按密钥串行化，不同密钥互不等待
- 新编码启动前清空输出目录
- 主播放列表由配置的码率阶梯生成
"""

from .config import LiveConfig, RenditionSpec, ConfigError, get_live_config
from .job import EncodeJob, JobStatus
from .ffmpeg import EncodeInvocation, LadderPlanner, FFmpegRunner
from .output import OutputDirectoryManager
from .playlist import PlaylistComposer
from .manager import ProcessSupervisor, StartOutcome, StopOutcome

__all__ = [
    'LiveConfig',
    'RenditionSpec',
    'ConfigError',
    'get_live_config',
    'EncodeJob',
    'JobStatus',
    'EncodeInvocation',
    'LadderPlanner',
    'FFmpegRunner',
    'OutputDirectoryManager',
    'PlaylistComposer',
    'ProcessSupervisor',
    'StartOutcome',
    'StopOutcome',
]
