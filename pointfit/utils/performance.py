#!/usr/bin/env python3
"""
Run statistics for pointfit commands

Wall time and process memory come from psutil; engines report their own
counters (iterations, correspondences, inliers) through record_metric.
"""

import os
import platform
import time
from contextlib import contextmanager
from typing import Any, Dict, List

import psutil

MB = 1024 * 1024
GB = 1024 ** 3


def _summarize(values: List[Any]):
    if values and all(isinstance(v, (int, float)) for v in values):
        return {
            'min': min(values),
            'max': max(values),
            'mean': sum(values) / len(values),
            'last': values[-1],
            'count': len(values),
        }
    return list(values)


class PerformanceMonitor:
    """Timer, memory reading and named counters for one run"""

    def __init__(self):
        self.process = psutil.Process(os.getpid())
        self.start_time = None
        self.end_time = None
        self.start_rss = 0
        self.metrics: Dict[str, List[Any]] = {}

    def start_monitoring(self):
        self.metrics = {}
        self.end_time = None
        self.start_rss = self._rss()
        self.start_time = time.perf_counter()

    def stop_monitoring(self):
        self.end_time = time.perf_counter()

    def record_metric(self, metric_name: str, value: Any):
        """Append a value to the named counter"""
        self.metrics.setdefault(metric_name, []).append(value)

    def get_total_time(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time

    def _rss(self) -> int:
        try:
            return self.process.memory_info().rss
        except psutil.Error:
            return 0

    def get_memory_usage(self) -> Dict[str, float]:
        """Resident memory now and its growth since start_monitoring"""
        rss = self._rss()
        try:
            percent = self.process.memory_percent()
        except psutil.Error:
            percent = 0.0
        return {
            'rss_mb': rss / MB,
            'delta_mb': (rss - self.start_rss) / MB if self.start_rss else 0.0,
            'percent': percent,
        }

    def get_system_info(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        return {
            'cpu_count': os.cpu_count(),
            'total_memory_gb': memory.total / GB,
            'available_memory_gb': memory.available / GB,
            'python_version': platform.python_version(),
        }

    def get_performance_summary(self) -> Dict[str, Any]:
        return {
            'total_time': self.get_total_time(),
            'memory_usage': self.get_memory_usage(),
            'system_info': self.get_system_info(),
            'custom_metrics': {name: _summarize(values) for name, values in self.metrics.items()},
        }

    def print_summary(self, name: str = "operation"):
        summary = self.get_performance_summary()
        memory = summary['memory_usage']

        print("\n" + "="*50)
        print(f"PERFORMANCE: {name}")
        print("="*50)
        print(f"Time: {summary['total_time']:.3f} s")
        print(f"Memory: {memory['rss_mb']:.1f} MB ({memory['delta_mb']:+.1f} MB)")
        print(f"CPU cores: {summary['system_info']['cpu_count']}")

        for metric, value in summary['custom_metrics'].items():
            if isinstance(value, dict) and value['count'] == 1:
                print(f"  {metric}: {value['last']:.6g}")
            elif isinstance(value, dict):
                print(f"  {metric}: last={value['last']:.6g} min={value['min']:.6g} "
                      f"max={value['max']:.6g} mean={value['mean']:.6g}")
            else:
                print(f"  {metric}: {value}")
        print("="*50)


@contextmanager
def performance_monitor(name: str = "operation", verbose: bool = True):
    """Time the enclosed block; print the summary on exit when verbose"""
    monitor = PerformanceMonitor()
    monitor.start_monitoring()
    try:
        yield monitor
    finally:
        monitor.stop_monitoring()
        if verbose:
            monitor.print_summary(name)
