"""
Common utilities for the chaincode benchmark.
"""

from .errors import BenchmarkError, ConfigurationError

__all__ = ['BenchmarkError', 'ConfigurationError']
