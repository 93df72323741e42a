"""
原始输出采集

把每个探测的原始输出原样写入本次运行的独立目录
"""
import logging
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)


class DirectoryCaptureSink:
    """
    目录采集器

    每次运行一个以 run_id（含时间戳）命名的子目录，并发运行互不冲突
    """

    def __init__(self, base_dir: Union[str, Path], run_id: str):
        """
        初始化采集器

        Args:
            base_dir: 输出根目录
            run_id: 运行ID
        """
        self.run_dir = Path(base_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=False)
        self.written: List[Path] = []

    def write(self, name: str, content: str) -> Path:
        """
        写入一份原始输出

        Args:
            name: 文件名（例如 01_dns_a_records.txt）
            content: 原始内容

        Returns:
            写入的文件路径
        """
        path = self.run_dir / name
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        self.written.append(path)
        logger.debug("[CaptureSink] 已写入 %s (%d 字节)", path, len(content))
        return path
