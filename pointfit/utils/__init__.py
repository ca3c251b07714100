#!/usr/bin/env python3
"""
Utility functions for pointfit
"""

from .logging import get_logger, set_log_level
from .performance import PerformanceMonitor, performance_monitor
from .validation import validate_point_cloud, validate_point_cloud_pair, validate_config

__all__ = [
    "get_logger",
    "set_log_level",
    "PerformanceMonitor",
    "performance_monitor",
    "validate_point_cloud",
    "validate_point_cloud_pair",
    "validate_config",
]
