#!/usr/bin/env python3
"""
Logging helpers for pointfit
Every module logs through a named child of the "pointfit" logger
"""

import logging

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package root, configuring the root once"""
    root = logging.getLogger("pointfit")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.WARNING)
    if name == "pointfit" or name.startswith("pointfit."):
        return logging.getLogger(name)
    return root.getChild(name)


def set_log_level(level) -> None:
    """Set the level of the package root logger ("DEBUG", "INFO", logging.WARNING, ...)"""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    get_logger("pointfit").setLevel(level)
