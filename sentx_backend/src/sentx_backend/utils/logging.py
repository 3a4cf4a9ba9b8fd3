from __future__ import annotations

import logging

_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO):
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # basicConfig 只生效一次，重复调用时仍需调整 sentx 层级的日志级别
    logger = logging.getLogger("sentx")
    logger.setLevel(level)
    return logger
