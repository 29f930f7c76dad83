#!/usr/bin/env python3
"""
Unit tests for the Gitlab group sink.
"""

import os
import sys
import unittest
from unittest.mock import patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deputize.errors import SinkError, SnapshotUnavailable
from deputize.http_client import APIError
from deputize.models import MutationPlan
from deputize.secrets import SecretBundle
from deputize.sinks.gitlab_sink import GitlabGroupSink, DEVELOPER_ACCESS, MAX_PER_PAGE


class TestGitlabGroupSink(unittest.TestCase):
    """Test cases for GitlabGroupSink."""

    def setUp(self):
        self.config = {
            'name': 'gitlab',
            'module': 'gitlab_sink',
            'base_url': 'https://gitlab.example.com/',
            'group': 'infra/approvers',
            'schedules': ['Approvers'],
            'skip_unknown_users': True,
        }
        self.secrets = SecretBundle(gitlab_auth_token='glpat-secret')

        patcher = patch('deputize.sinks.gitlab_sink.RestClient')
        self.client_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.client_class.return_value

        self.sink = GitlabGroupSink(self.config, self.secrets)

    def test_open_uses_private_token(self):
        self.sink.open()

        args, kwargs = self.client_class.call_args
        self.assertEqual(args, ('gitlab', 'https://gitlab.example.com/api/v4'))
        self.assertEqual(kwargs['headers'], {'PRIVATE-TOKEN': 'glpat-secret'})
        self.assertEqual(kwargs['timeout'], 30)

    def test_open_without_token(self):
        sink = GitlabGroupSink(self.config, SecretBundle())
        with self.assertRaises(SinkError):
            sink.open()

    def test_group_path_is_url_encoded(self):
        self.assertEqual(self.sink.group_path, '/groups/infra%2Fapprovers')

    def test_lookup_identity(self):
        self.client.request.return_value = [{'id': 7, 'username': 'alice'}]
        self.sink.open()

        self.assertEqual(self.sink.lookup_identity('alice@example.com'), ['7'])
        self.client.request.assert_called_once_with('GET', '/users', params={'search': 'alice@example.com'})

    def test_lookup_identity_many_and_none(self):
        self.sink.open()
        self.client.request.return_value = [{'id': 1, 'username': 'a'}, {'id': 2, 'username': 'b'}]
        self.assertEqual(self.sink.lookup_identity('x@example.com'), ['1', '2'])

        self.client.request.return_value = []
        self.assertEqual(self.sink.lookup_identity('y@example.com'), [])

    def test_read_snapshot_paginates_and_protects(self):
        self.sink.per_page = 2
        self.client.request.side_effect = [
            [{'id': 1, 'username': 'owner', 'access_level': 50},
             {'id': 2, 'username': 'bob', 'access_level': 30}],
            [{'id': 3, 'username': 'carol', 'access_level': 30}],
        ]
        self.sink.open()

        members = self.sink.read_snapshot()

        self.assertEqual(members, frozenset({'1', '2', '3'}))
        self.assertEqual(self.sink.protected_members(), frozenset({'1'}))
        self.assertEqual(self.client.request.call_count, 2)
        self.client.request.assert_called_with(
            'GET', '/groups/infra%2Fapprovers/members', params={'per_page': 2, 'page': 2})

    def test_per_page_capped_at_gitlab_maximum(self):
        self.config['per_page'] = 500
        sink = GitlabGroupSink(self.config, self.secrets)
        self.assertEqual(sink.per_page, MAX_PER_PAGE)

        first_page = [{'id': i, 'username': f'user{i}', 'access_level': 30} for i in range(MAX_PER_PAGE)]
        self.client.request.side_effect = [first_page, [{'id': 999, 'username': 'last', 'access_level': 30}]]
        sink.open()

        members = sink.read_snapshot()

        self.assertEqual(len(members), MAX_PER_PAGE + 1)
        self.assertIn('999', members)
        self.client.request.assert_called_with(
            'GET', '/groups/infra%2Fapprovers/members', params={'per_page': MAX_PER_PAGE, 'page': 2})

    def test_read_snapshot_api_error(self):
        self.client.request.side_effect = APIError("HTTP 404", status_code=404)
        self.sink.open()

        with self.assertRaises(SnapshotUnavailable) as ctx:
            self.sink.read_snapshot()
        self.assertIn('infra/approvers', str(ctx.exception))

    def test_apply_adds_developers_and_removes(self):
        self.client.request.return_value = {}
        self.sink.open()

        result = self.sink.apply(MutationPlan(to_remove=('3',), to_add=('7',)))

        calls = self.client.request.call_args_list
        self.assertEqual(calls[0][0], ('DELETE', '/groups/infra%2Fapprovers/members/3'))
        self.assertEqual(calls[1][0], ('POST', '/groups/infra%2Fapprovers/members'))
        self.assertEqual(calls[1][1]['body'], {'user_id': 7, 'access_level': DEVELOPER_ACCESS})
        self.assertEqual(result.added(), ['7'])
        self.assertEqual(result.removed(), ['3'])

    def test_apply_records_failures(self):
        self.client.request.side_effect = [APIError("HTTP 403", status_code=403), {}]
        self.sink.open()

        result = self.sink.apply(MutationPlan(to_remove=('3',), to_add=('7',)))

        self.assertEqual([o.identity for o in result.failed], ['3'])
        self.assertEqual(result.added(), ['7'])

    def test_close(self):
        self.sink.open()
        self.sink.close()
        self.client.close_connection.assert_called_once()


if __name__ == '__main__':
    unittest.main()
