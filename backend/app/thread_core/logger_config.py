import logging
from typing import Optional, Union

import uvicorn

from thread_core.configs import settings

FORMAT = "%(levelprefix)s %(asctime)s [%(threadName)s] [%(name)s] %(message)s"


def get_logger(
    name: str = "thread_core", level: Optional[Union[int, str]] = None
) -> logging.Logger:
    """
    Return ``name``'s logger with the uvicorn coloured formatter attached.

    Module loggers below ``thread_core`` propagate here, so configuring the
    package logger once covers the whole service.
    """
    level = level if level is not None else settings.LOG_LEVEL.upper()
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            uvicorn.logging.DefaultFormatter(FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(handler)

    return logger
