#!/usr/bin/env python3
"""
Configuration management for pointfit
"""

from .settings import ConfigManager

__all__ = ["ConfigManager"]
