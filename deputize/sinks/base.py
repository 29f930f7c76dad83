"""
Base sink adapter interface and the shared mutation logic.

Every sink (LDAP group, Gitlab group, Slack channel topic) implements the
same capability set: look up a roster entry, read the current membership,
and add or remove one member. Applying a plan is shared so that ordering and
partial failure handling are identical for every sink.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, FrozenSet

from deputize.logging_setup import audit_logger
from deputize.models import ADD, REMOVE, MutationOutcome, MutationPlan, MutationResult

logger = logging.getLogger(__name__)


class SinkAdapter(ABC):
    """
    Abstract base class for membership sinks.

    Subclasses implement lookup_identity and read_snapshot, plus either
    add_member and remove_member or their own apply. Adapters are used as
    context managers so connections are closed after each pass.
    """

    def __init__(self, config: Dict[str, Any], secrets=None):
        """
        Initialize sink adapter.

        Args:
            config: Sink configuration dictionary
            secrets: SecretBundle with the credentials for this sink
        """
        self.config = config
        self.secrets = secrets
        self.name = config['name']
        self.skip_unknown_users = config.get('skip_unknown_users', False)
        self.allow_empty = config.get('allow_empty', False)
        self.schedules = config.get('schedules')
        self._protected = frozenset()

    @classmethod
    def from_config(cls, config: Dict[str, Any], secrets=None) -> List['SinkAdapter']:
        """Create the adapters described by one sink configuration entry."""
        return [cls(config, secrets)]

    def open(self):
        """Open connections needed by this sink."""
        pass

    def close(self):
        """Close connections opened by this sink."""
        pass

    @abstractmethod
    def lookup_identity(self, entry: str) -> List[str]:
        """
        Look up the sink identities matching a roster entry.

        Args:
            entry: Roster entry (email address)

        Returns:
            Every candidate identity; the resolver rejects more than one
        """
        pass

    @abstractmethod
    def read_snapshot(self) -> FrozenSet[str]:
        """
        Read the live membership of the target group or channel.

        Raises:
            SnapshotUnavailable: If the target cannot be located or read
        """
        pass

    def protected_members(self) -> FrozenSet[str]:
        """Members seen by the last read_snapshot that must never be removed."""
        return self._protected

    def add_member(self, identity: str):
        """Add one identity; raise on failure."""
        raise NotImplementedError(f"{type(self).__name__} does not support single member changes")

    def remove_member(self, identity: str):
        """Remove one identity; raise on failure."""
        raise NotImplementedError(f"{type(self).__name__} does not support single member changes")

    def apply(self, plan: MutationPlan) -> MutationResult:
        """
        Apply a mutation plan.

        All removals are issued before any addition. Each call is attempted
        independently and every outcome is collected.

        Args:
            plan: Plan computed by the diff engine

        Returns:
            MutationResult with applied and failed outcomes
        """
        result = MutationResult()
        if plan.empty:
            logger.debug(f"No changes for {self.name}")
            return result

        for identity in plan.to_remove:
            result.record(self._attempt(REMOVE, identity, self.remove_member))

        for identity in plan.to_add:
            result.record(self._attempt(ADD, identity, self.add_member))

        logger.info(f"Applied {len(result.applied)} change(s) to {self.name}, {len(result.failed)} failed")
        return result

    def _attempt(self, action: str, identity: str, operation) -> MutationOutcome:
        try:
            operation(identity)
        except Exception as e:
            logger.error(f"Failed to {action} '{identity}' in {self.name}: {e}")
            audit_logger.log_membership_change(self.name, action, identity, False)
            return MutationOutcome(action, identity, str(e))

        logger.info(f"{'Added' if action == ADD else 'Removed'} '{identity}' in {self.name}")
        audit_logger.log_membership_change(self.name, action, identity, True)
        return MutationOutcome(action, identity)

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"
