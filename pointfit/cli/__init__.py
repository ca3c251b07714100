#!/usr/bin/env python3
"""
Command line interface for pointfit
"""

from .cli_app import main, create_parser

__all__ = ["main", "create_parser"]
