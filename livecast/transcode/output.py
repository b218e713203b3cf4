"""
单路流输出目录管理
"""

import os
import logging
from typing import List

from .config import LiveConfig

logger = logging.getLogger(__name__)


class OutputDirectoryManager:
    """负责 ``<media_root>/<identity>`` 目录

    同一密钥的新任务启动前清空目录，迟到的客户端不会拿到上一场直播的切片。
    """

    def __init__(self, config: LiveConfig):
        self.config = config

    def path_for(self, identity: str) -> str:
        return self.config.get_output_dir(identity)

    def prepare(self, identity: str) -> str:
        """创建流目录并删除其中所有文件

        尽力而为：删除失败的文件记录日志后跳过，新任务会覆盖它或将其滚出窗口。

        Args:
            identity: 推流密钥

        Returns:
            目录路径
        """
        output_dir = self.path_for(identity)
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create output directory {output_dir}: {e}")
            return output_dir

        try:
            names = os.listdir(output_dir)
        except OSError as e:
            logger.warning(f"Failed to list output directory {output_dir}: {e}")
            return output_dir

        removed = 0
        for filename in names:
            file_path = os.path.join(output_dir, filename)
            try:
                if os.path.isfile(file_path) or os.path.islink(file_path):
                    os.remove(file_path)
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to delete stale file {file_path}: {e}")

        if removed:
            logger.info(f"Cleared {removed} stale files from {output_dir}")
        return output_dir

    def list_streams(self) -> List[str]:
        """媒体根目录下现有的流目录"""
        root = self.config.media_root
        try:
            names = os.listdir(root)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"Failed to list media root {root}: {e}")
            return []
        return sorted(name for name in names if os.path.isdir(os.path.join(root, name)))
