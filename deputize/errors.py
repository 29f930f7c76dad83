"""
Error types raised by the deputize reconciliation core.

Each error carries enough context (sink, identity, operation) to be
actionable from the log line alone.
"""

from typing import List, Optional


class DeputizeError(Exception):
    """Base exception for reconciliation errors."""
    pass


class RosterUnavailable(DeputizeError):
    """Raised when the desired on-call roster cannot be fetched."""
    pass


class SinkError(DeputizeError):
    """Raised when a sink adapter cannot be loaded or connected."""
    pass


class ResolutionError(DeputizeError):
    """Base exception for identity resolution failures."""

    def __init__(self, entry: str, message: str):
        self.entry = entry
        super().__init__(message)


class ResolutionAmbiguous(ResolutionError):
    """Raised when a roster entry matches more than one sink identity."""

    def __init__(self, entry: str, candidate_count: int, sink: Optional[str] = None):
        self.candidate_count = candidate_count
        self.sink = sink
        where = f" in {sink}" if sink else ""
        super().__init__(entry, f"Found {candidate_count} users for '{entry}'{where}, expected exactly one")


class ResolutionNotFound(ResolutionError):
    """Raised when a roster entry has no matching sink identity."""

    def __init__(self, entry: str, sink: Optional[str] = None):
        self.sink = sink
        where = f" in {sink}" if sink else ""
        super().__init__(entry, f"No user found for '{entry}'{where}")


class ResolutionLookupFailed(ResolutionError):
    """Raised when the lookup call itself fails for a roster entry."""

    def __init__(self, entry: str, error: Exception, sink: Optional[str] = None):
        self.error = error
        self.sink = sink
        where = f" in {sink}" if sink else ""
        super().__init__(entry, f"Lookup of '{entry}'{where} failed: {error}")


class SnapshotUnavailable(DeputizeError):
    """Raised when the current membership of a sink cannot be read."""

    def __init__(self, sink: str, reason: str):
        self.sink = sink
        self.reason = reason
        super().__init__(f"Unable to read membership of {sink}: {reason}")


class MutationPartialFailure(DeputizeError):
    """Raised when some add/remove calls of a mutation plan failed."""

    def __init__(self, sink: str, failed: List):
        self.sink = sink
        self.failed = list(failed)
        details = ", ".join(f"{o.action} {o.identity} ({o.error})" for o in self.failed)
        super().__init__(f"{len(self.failed)} membership change(s) failed for {sink}: {details}")
