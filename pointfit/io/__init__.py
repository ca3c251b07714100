#!/usr/bin/env python3
"""
File helpers for pointfit
"""

from .matrix_io import (
    read_matrix,
    write_matrix,
    read_vector,
    write_vector,
    read_raw_data,
    write_raw_data,
    get_file_size,
)

__all__ = [
    "read_matrix",
    "write_matrix",
    "read_vector",
    "write_vector",
    "read_raw_data",
    "write_raw_data",
    "get_file_size",
]
