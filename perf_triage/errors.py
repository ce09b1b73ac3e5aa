"""Exception taxonomy for a diagnostic run."""

from __future__ import annotations


class PerfTriageError(Exception):
    """Base class for every error raised by perf-triage."""


class CollectionFailure(PerfTriageError):
    """A counter or a whole domain could not be read. Recoverable."""


class CleanupFailure(PerfTriageError):
    """A benchmark scratch file or directory could not be removed."""


class SubmissionFailure(PerfTriageError):
    """The ticketing system rejected or never received a support case."""

    def __init__(self, message: str, guidance: str = "") -> None:
        super().__init__(message)
        self.guidance = guidance


class PrivilegeFailure(PerfTriageError):
    """The process lacks the privileges needed to read system counters."""


class ConfigurationError(PerfTriageError):
    """The settings file or command line options are invalid."""
