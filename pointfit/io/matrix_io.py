#!/usr/bin/env python3
"""
Matrix and vector file helpers

Binary layout: row count and column count as native int64, followed by the
row-major payload with no padding. The payload carries no type tag, so the
reader must ask for the dtype the writer used (float64 on both sides by
default). Text layout: one row per line, whitespace-separated values.
"""

import os
from typing import Optional

import numpy as np

HEADER_DTYPE = np.int64


def write_matrix(filename: str, matrix, binary: bool = True, dtype=np.float64) -> None:
    """Write a 2-D matrix; 1-D input becomes a column. `dtype` sets the binary payload type"""
    matrix = np.asarray(matrix)
    if matrix.ndim == 1:
        matrix = matrix.reshape(-1, 1)
    if matrix.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got {matrix.ndim} dimensions")

    if binary:
        with open(filename, 'wb') as f:
            np.array(matrix.shape, dtype=HEADER_DTYPE).tofile(f)
            np.ascontiguousarray(matrix, dtype=dtype).tofile(f)
    else:
        np.savetxt(filename, matrix, fmt='%.17g')


def read_matrix(filename: str, binary: bool = True, dtype=np.float64) -> np.ndarray:
    """
    Read a matrix written by write_matrix

    Args:
        filename: Path to the file
        binary: Binary layout if True, text layout otherwise
        dtype: Scalar type of the binary payload

    Returns:
        2-D array of shape (rows, cols)
    """
    if not os.path.exists(filename):
        raise ValueError(f"File not found: {filename}")

    if not binary:
        return np.loadtxt(filename, dtype=dtype, ndmin=2)

    with open(filename, 'rb') as f:
        header = np.fromfile(f, dtype=HEADER_DTYPE, count=2)
        if len(header) != 2:
            raise ValueError(f"Truncated matrix header in {filename}")
        rows, cols = (int(v) for v in header)
        if rows < 0 or cols < 0:
            raise ValueError(f"Invalid matrix shape ({rows}, {cols}) in {filename}")
        data = np.fromfile(f, dtype=dtype, count=rows * cols)
    if data.size != rows * cols:
        raise ValueError(f"Expected {rows * cols} values in {filename}, found {data.size}")
    return data.reshape(rows, cols)


def write_vector(filename: str, vector, binary: bool = True, dtype=np.float64) -> None:
    write_matrix(filename, np.asarray(vector).reshape(-1, 1), binary=binary, dtype=dtype)


def read_vector(filename: str, binary: bool = True, dtype=np.float64) -> np.ndarray:
    return read_matrix(filename, binary=binary, dtype=dtype).reshape(-1)


def get_file_size(filename: str) -> int:
    return os.path.getsize(filename)


def write_raw_data(filename: str, data: bytes) -> None:
    with open(filename, 'wb') as f:
        f.write(data)


def read_raw_data(filename: str, num_bytes: Optional[int] = None) -> bytes:
    """Read `num_bytes` bytes (the whole file when None or 0)"""
    with open(filename, 'rb') as f:
        return f.read(num_bytes or -1)
