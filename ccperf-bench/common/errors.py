"""
Exception hierarchy for the benchmark harness.
"""


class BenchmarkError(Exception):
    """Base class for all harness errors."""


class ConfigurationError(BenchmarkError, ValueError):
    """Invalid or incomplete topology or run parameters. Fatal before any worker spawns."""


class LedgerError(BenchmarkError):
    """Failure reported by a ledger backend."""


class EndorsementError(LedgerError):
    """A proposal was rejected or returned no response."""


class OrderingError(LedgerError):
    """Submission to the ordering service failed."""


class CommitMonitorError(LedgerError):
    """The commit notification stream failed."""


class PopulationError(BenchmarkError):
    """The pre-population transaction failed or its commit was never observed."""


class AnnotationError(BenchmarkError):
    """The external annotation endpoint rejected the run annotation."""
