"""日志初始化。"""

from __future__ import annotations

import logging

from rich.logging import RichHandler

PLAIN_FORMAT = "%(asctime)s [%(processName)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, rich_output: bool = False) -> None:
    """初始化项目日志配置。

    rich_output 为 True 时使用 RichHandler，与命令行进度条共用同一个控制台输出。
    """

    if rich_output:
        logging.basicConfig(
            level=level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
            force=True,
        )
    else:
        logging.basicConfig(level=level, format=PLAIN_FORMAT, force=True)
