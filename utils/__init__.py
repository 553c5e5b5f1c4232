"""Utilities for the aggregation system."""

from .utils import (
    setup_logging,
    save_results,
    compute_hash,
    format_duration,
    PerformanceMonitor,
    create_performance_report,
    get_system_info
)

__all__ = [
    'setup_logging',
    'save_results',
    'compute_hash',
    'format_duration',
    'PerformanceMonitor',
    'create_performance_report',
    'get_system_info'
]
