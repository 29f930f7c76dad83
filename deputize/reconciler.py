"""
Reconciliation of sink memberships against the on-call roster.

One pass fetches the desired roster once per distinct schedule list, then
for each sink resolves identities, reads the live membership, computes the
plan and applies it. A sink failure is recorded on its report and never
stops the other sinks. Nothing in this layer retries: a failed sink is
picked up again on the next scheduled run.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Any, Callable, FrozenSet, Iterable, List, Optional, Tuple

from deputize.diff import diff
from deputize.errors import (
    DeputizeError, MutationPartialFailure, ResolutionLookupFailed, ResolutionNotFound, SinkError
)
from deputize.logging_setup import audit_logger
from deputize.models import ReconciliationReport, SinkReport, SinkState
from deputize.resolver import IdentityResolver
from deputize.roster import RosterSource
from deputize.sinks.base import SinkAdapter

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Drives one reconciliation pass over a set of sinks.

    Args:
        config: Loaded configuration (source.pagerduty and reconcile sections)
        roster_source: Source of the on-call roster
        sinks: Sink adapters to reconcile
        notifier: Optional callable receiving the report when anything
            changed or failed
    """

    def __init__(self, config: Dict[str, Any], roster_source: RosterSource,
                 sinks: List[SinkAdapter], notifier: Optional[Callable[[ReconciliationReport], Any]] = None):
        pagerduty = config.get('source', {}).get('pagerduty', {})
        self.default_schedules = tuple(pagerduty.get('on_call_schedules', ()))
        self.window_seconds = pagerduty.get('window_seconds', 1)

        reconcile_config = config.get('reconcile', {})
        self.dry_run = reconcile_config.get('dry_run', False)
        self.max_workers = reconcile_config.get('max_workers', 1)

        self.roster_source = roster_source
        self.sinks = list(sinks)
        self.notifier = notifier

    def schedules_for(self, sink: SinkAdapter) -> Tuple[str, ...]:
        """Schedules whose on-call users form the sink's desired roster."""
        return tuple(sink.schedules) if sink.schedules else self.default_schedules

    def fetch_rosters(self) -> Dict[Tuple[str, ...], FrozenSet[str]]:
        """
        Fetch the roster once per distinct schedule list.

        Raises:
            RosterUnavailable: If any roster cannot be fetched
        """
        rosters = {}
        for sink in self.sinks:
            schedules = self.schedules_for(sink)
            if schedules not in rosters:
                rosters[schedules] = frozenset(
                    self.roster_source.fetch_roster(schedules, self.window_seconds))
        return rosters

    def reconcile(self, desired_roster: Optional[Iterable[str]] = None) -> ReconciliationReport:
        """
        Run one pass over every sink.

        Args:
            desired_roster: Use this roster for every sink instead of
                fetching it from the roster source

        Returns:
            ReconciliationReport with one SinkReport per sink

        Raises:
            RosterUnavailable: Before any sink is touched
        """
        report = ReconciliationReport(dry_run=self.dry_run, start_time=datetime.now())

        if desired_roster is not None:
            roster = frozenset(desired_roster)
            rosters = {self.schedules_for(sink): roster for sink in self.sinks}
        else:
            rosters = self.fetch_rosters()

        report.roster = frozenset().union(*rosters.values())
        audit_logger.log_run(len(report.roster), len(self.sinks), self.dry_run)

        def run(sink):
            return self.reconcile_sink(sink, rosters[self.schedules_for(sink)])

        if self.max_workers > 1 and len(self.sinks) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                report.sinks = list(executor.map(run, self.sinks))
        else:
            report.sinks = [run(sink) for sink in self.sinks]

        report.end_time = datetime.now()
        logger.info(f"Reconciled {len(report.sinks)} sink(s) in {report.runtime_seconds:.2f} seconds, "
                    f"{len(report.failed_sinks)} failed")

        if report.changed or not report.ok:
            self._notify(report)

        return report

    def reconcile_sink(self, sink: SinkAdapter, roster: Iterable[str]) -> SinkReport:
        """
        Reconcile a single sink against a roster.

        Never raises; failures are recorded on the returned report.
        """
        report = SinkReport(sink.name)
        try:
            with sink:
                self._transition(report, SinkState.RESOLVING)
                resolution = IdentityResolver(sink.lookup_identity, sink.name).resolve(roster)
                report.desired = resolution.resolved
                report.resolution_failures = resolution.failures
                for failure in resolution.failures:
                    if isinstance(failure, ResolutionNotFound) and sink.skip_unknown_users:
                        continue
                    report.errors.append(failure)

                # without every lookup answered the desired set is incomplete
                lookup_failures = [f for f in resolution.failures if isinstance(f, ResolutionLookupFailed)]
                if lookup_failures:
                    raise SinkError(f"{sink.name}: {len(lookup_failures)} identity lookup(s) failed, "
                                    f"membership left unchanged")

                self._transition(report, SinkState.SNAPSHOTTING)
                report.current = frozenset(sink.read_snapshot())

                self._transition(report, SinkState.DIFFING)
                report.plan = diff(report.desired, report.current, sink.protected_members())

                if report.plan.empty:
                    logger.info(f"{sink.name} is up to date")
                elif not report.desired and not sink.allow_empty:
                    report.skipped_reason = "no on-call identities resolved"
                    logger.warning(f"Not emptying {sink.name}: no on-call identities resolved, "
                                   f"keeping {len(report.current)} member(s)")
                elif self.dry_run:
                    logger.info(f"Dry run, {sink.name} would remove [{', '.join(report.plan.to_remove)}] "
                                f"and add [{', '.join(report.plan.to_add)}]")
                else:
                    self._transition(report, SinkState.MUTATING)
                    report.result = sink.apply(report.plan)
                    try:
                        report.result.raise_for_failures(sink.name)
                    except MutationPartialFailure as e:
                        logger.error(str(e))
                        report.errors.append(e)

        except DeputizeError as e:
            logger.error(f"Reconciliation of {sink.name} failed while {report.state.value}: {e}")
            report.errors.append(e)
        except Exception as e:
            logger.error(f"Unexpected error reconciling {sink.name} while {report.state.value}: {e}",
                         exc_info=True)
            report.errors.append(e)

        self._transition(report, SinkState.FAILED if report.errors else SinkState.DONE)
        logger.info(report.summary())
        return report

    def _transition(self, report: SinkReport, state: SinkState):
        logger.debug(f"{report.sink}: {report.state.value} -> {state.value}")
        report.state = state

    def _notify(self, report: ReconciliationReport):
        if not self.notifier:
            return
        try:
            self.notifier(report)
        except Exception as e:
            logger.error(f"Notifier failed: {e}")
