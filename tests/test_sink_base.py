#!/usr/bin/env python3
"""
Unit tests for the shared sink mutation logic.
"""

import os
import sys
import unittest
from unittest.mock import Mock

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deputize.errors import MutationPartialFailure
from deputize.models import ADD, REMOVE, MutationPlan
from deputize.sinks.base import SinkAdapter


class RecordingSink(SinkAdapter):
    """Sink that records every call in order."""

    def __init__(self, config=None, secrets=None, fail_on=()):
        super().__init__(config or {'name': 'recording'}, secrets)
        self.calls = []
        self.fail_on = set(fail_on)

    def lookup_identity(self, entry):
        return [entry]

    def read_snapshot(self):
        return frozenset()

    def add_member(self, identity):
        self.calls.append((ADD, identity))
        if identity in self.fail_on:
            raise RuntimeError(f"cannot add {identity}")

    def remove_member(self, identity):
        self.calls.append((REMOVE, identity))
        if identity in self.fail_on:
            raise RuntimeError(f"cannot remove {identity}")


class TestSinkAdapter(unittest.TestCase):
    """Test cases for SinkAdapter."""

    def test_config_policies(self):
        sink = RecordingSink({'name': 'x', 'skip_unknown_users': True, 'allow_empty': True,
                              'schedules': ['Approvers']})

        self.assertEqual(sink.name, 'x')
        self.assertTrue(sink.skip_unknown_users)
        self.assertTrue(sink.allow_empty)
        self.assertEqual(sink.schedules, ['Approvers'])
        self.assertEqual(sink.protected_members(), frozenset())

    def test_policy_defaults(self):
        sink = RecordingSink()

        self.assertFalse(sink.skip_unknown_users)
        self.assertFalse(sink.allow_empty)
        self.assertIsNone(sink.schedules)

    def test_empty_plan_makes_no_calls(self):
        sink = RecordingSink()
        result = sink.apply(MutationPlan())

        self.assertEqual(sink.calls, [])
        self.assertTrue(result.noop)

    def test_removals_before_additions(self):
        sink = RecordingSink()
        sink.apply(MutationPlan(to_remove=('carol', 'dan'), to_add=('alice', 'bob')))

        self.assertEqual(sink.calls, [
            (REMOVE, 'carol'), (REMOVE, 'dan'), (ADD, 'alice'), (ADD, 'bob')
        ])

    def test_partial_failure_is_contained(self):
        sink = RecordingSink(fail_on={'bob'})
        result = sink.apply(MutationPlan(to_remove=('carol',), to_add=('alice', 'bob')))

        self.assertEqual(len(sink.calls), 3)
        self.assertEqual(result.removed(), ['carol'])
        self.assertEqual(result.added(), ['alice'])
        self.assertEqual([o.identity for o in result.failed], ['bob'])
        self.assertIn('cannot add bob', result.failed[0].error)

        with self.assertRaises(MutationPartialFailure) as ctx:
            result.raise_for_failures(sink.name)
        self.assertEqual([o.identity for o in ctx.exception.failed], ['bob'])
        self.assertIn('add bob', str(ctx.exception))
        self.assertNotIn('alice', str(ctx.exception))

    def test_every_change_is_audited(self):
        from deputize.sinks import base

        sink = RecordingSink(fail_on={'bob'})
        original = base.audit_logger
        base.audit_logger = Mock()
        try:
            sink.apply(MutationPlan(to_remove=('carol',), to_add=('bob',)))
            base.audit_logger.log_membership_change.assert_any_call('recording', REMOVE, 'carol', True)
            base.audit_logger.log_membership_change.assert_any_call('recording', ADD, 'bob', False)
        finally:
            base.audit_logger = original

    def test_unsupported_single_member_changes(self):
        class ReadOnlySink(SinkAdapter):
            def lookup_identity(self, entry):
                return []

            def read_snapshot(self):
                return frozenset()

        result = ReadOnlySink({'name': 'ro'}).apply(MutationPlan(to_add=('alice',)))
        self.assertEqual(len(result.failed), 1)
        self.assertIn('does not support', result.failed[0].error)

    def test_context_manager_opens_and_closes(self):
        sink = RecordingSink()
        sink.open = Mock()
        sink.close = Mock()

        with sink as entered:
            self.assertIs(entered, sink)
            sink.open.assert_called_once()
            sink.close.assert_not_called()

        sink.close.assert_called_once()

    def test_from_config_builds_one_adapter(self):
        sinks = RecordingSink.from_config({'name': 'one'})
        self.assertEqual(len(sinks), 1)
        self.assertEqual(sinks[0].name, 'one')


if __name__ == '__main__':
    unittest.main()
