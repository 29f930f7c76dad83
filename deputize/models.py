"""
Transient data types used during one reconciliation pass.

Nothing here is persisted between runs; the sink itself is the source of
truth for the previous state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from deputize.errors import MutationPartialFailure, ResolutionError

ADD = 'add'
REMOVE = 'remove'


class SinkState(Enum):
    """Lifecycle of a single sink within a pass."""

    IDLE = 'idle'
    RESOLVING = 'resolving'
    SNAPSHOTTING = 'snapshotting'
    DIFFING = 'diffing'
    MUTATING = 'mutating'
    DONE = 'done'
    FAILED = 'failed'


@dataclass(frozen=True)
class MutationPlan:
    """Removals and additions needed to bring a sink in line with the roster."""

    to_remove: Tuple[str, ...] = ()
    to_add: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.to_remove and not self.to_add

    def __len__(self) -> int:
        return len(self.to_remove) + len(self.to_add)


@dataclass(frozen=True)
class MutationOutcome:
    """Result of one add or remove call."""

    action: str
    identity: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MutationResult:
    """All outcomes of applying a plan to one sink."""

    applied: List[MutationOutcome] = field(default_factory=list)
    failed: List[MutationOutcome] = field(default_factory=list)

    @property
    def noop(self) -> bool:
        return not self.applied and not self.failed

    def record(self, outcome: MutationOutcome):
        if outcome.ok:
            self.applied.append(outcome)
        else:
            self.failed.append(outcome)

    def added(self) -> List[str]:
        return [o.identity for o in self.applied if o.action == ADD]

    def removed(self) -> List[str]:
        return [o.identity for o in self.applied if o.action == REMOVE]

    def raise_for_failures(self, sink: str):
        """Raise MutationPartialFailure naming only the failed identities."""
        if self.failed:
            raise MutationPartialFailure(sink, self.failed)


@dataclass
class ResolutionResult:
    resolved: FrozenSet[str] = frozenset()
    failures: List[ResolutionError] = field(default_factory=list)


@dataclass
class SinkReport:
    """Per-sink outcome of a reconciliation pass."""

    sink: str
    state: SinkState = SinkState.IDLE
    desired: FrozenSet[str] = frozenset()
    current: FrozenSet[str] = frozenset()
    plan: MutationPlan = field(default_factory=MutationPlan)
    result: MutationResult = field(default_factory=MutationResult)
    resolution_failures: List[ResolutionError] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state == SinkState.DONE and not self.errors

    @property
    def changed(self) -> bool:
        return bool(self.result.applied)

    def summary(self) -> str:
        """One-line human readable summary."""
        if self.state == SinkState.FAILED and not self.result.applied:
            reason = self.errors[-1] if self.errors else 'unknown error'
            return f"{self.sink}: FAILED ({reason})"

        added = self.result.added()
        removed = self.result.removed()
        parts = [f"{self.sink}:"]
        if self.skipped_reason:
            parts.append(f"skipped ({self.skipped_reason})")
        elif self.plan.empty:
            parts.append("no changes")
        elif self.result.noop:
            parts.append(f"would add [{', '.join(self.plan.to_add)}]")
            parts.append(f"would remove [{', '.join(self.plan.to_remove)}]")
        else:
            parts.append(f"+{len(added)} [{', '.join(added)}]")
            parts.append(f"-{len(removed)} [{', '.join(removed)}]")
        if self.errors:
            parts.append(f"with {len(self.errors)} error(s)")
        return ' '.join(parts)


@dataclass
class ReconciliationReport:
    """Aggregated outcome of one pass across all sinks."""

    roster: FrozenSet[str] = frozenset()
    sinks: List[SinkReport] = field(default_factory=list)
    dry_run: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return all(report.ok for report in self.sinks)

    @property
    def changed(self) -> bool:
        return any(report.changed for report in self.sinks)

    @property
    def failed_sinks(self) -> List[SinkReport]:
        return [report for report in self.sinks if not report.ok]

    @property
    def runtime_seconds(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def summary_lines(self) -> List[str]:
        lines = [f"On-call roster: {', '.join(sorted(self.roster)) or '(empty)'}"]
        if self.dry_run:
            lines.append("Dry run: no changes were applied")
        for report in self.sinks:
            lines.append(report.summary())
            for failure in report.resolution_failures:
                lines.append(f"  unresolved: {failure}")
            for error in report.errors:
                if error not in report.resolution_failures:
                    lines.append(f"  error: {error}")
        return lines
