# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：log.py
@Date    ：2025/07/02 10:20
"""
import sys
import logging

from speech_to_text.core.conf import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"


def setup_logging(name: str = "speech_to_text", level: str = settings.LOG_LEVEL) -> logging.Logger:
    """初始化日志器

    Args:
        name: 日志器名称
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # 避免重复添加处理器
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return logger


log = setup_logging()
