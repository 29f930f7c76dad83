"""
Identity resolution from roster entries to sink identities.

A roster entry (an email address) is looked up exactly once per sink. More
than one candidate is never auto-resolved; zero candidates is a soft
failure so that one unprovisioned person does not block everyone else.
"""

import logging
from typing import Callable, Iterable, List

from deputize.diff import index_identities, normalize
from deputize.errors import ResolutionAmbiguous, ResolutionLookupFailed, ResolutionNotFound
from deputize.models import ResolutionResult

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Resolves roster entries into identities of one sink.

    The lookup callable returns the list of candidate identities for an
    entry; it is called once per distinct entry.
    """

    def __init__(self, lookup: Callable[[str], List[str]], sink_name: str = ''):
        self.lookup = lookup
        self.sink_name = sink_name

    def resolve(self, roster: Iterable[str]) -> ResolutionResult:
        """
        Resolve every roster entry.

        Args:
            roster: Roster entries; duplicates are collapsed

        Returns:
            ResolutionResult with the deduplicated resolved identities and
            one ResolutionError per entry that could not be resolved
        """
        resolved = []
        failures = []

        for entry in normalize(roster):
            try:
                candidates = list(self.lookup(entry) or [])
            except Exception as e:
                failure = ResolutionLookupFailed(entry, e, self.sink_name)
                logger.error(str(failure))
                failures.append(failure)
                continue

            # one candidate per matching account, even when two accounts share a name
            candidates = [str(c).strip() for c in candidates if c is not None and str(c).strip()]

            if len(candidates) == 1:
                logger.debug(f"Resolved '{entry}' to '{candidates[0]}' in {self.sink_name}")
                resolved.append(candidates[0])
            elif not candidates:
                failure = ResolutionNotFound(entry, self.sink_name)
                logger.warning(str(failure))
                failures.append(failure)
            else:
                failure = ResolutionAmbiguous(entry, len(candidates), self.sink_name)
                logger.error(f"{failure}: {', '.join(candidates)}")
                failures.append(failure)

        return ResolutionResult(resolved=frozenset(index_identities(resolved).values()), failures=failures)
