#!/usr/bin/env python3
"""
Tests for the command line entry point and application wiring.
"""

import os
import sys
import copy
import unittest
from unittest.mock import patch

import pytest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deputize import __version__
from deputize.config import ConfigurationError
from deputize.errors import RosterUnavailable
from deputize.main import (
    DeputizeApp, load_sink_class, create_parser, main,
    EXIT_OK, EXIT_SINK_FAILURE, EXIT_CONFIG_ERROR, EXIT_ROSTER_UNAVAILABLE, EXIT_UNEXPECTED_ERROR
)
from deputize.models import ReconciliationReport, SinkReport, SinkState
from deputize.secrets import SecretBundle, SecretsError
from deputize.sinks.gitlab_sink import GitlabGroupSink
from deputize.sinks.ldap_sink import LDAPGroupSink
from deputize.sinks.slack_sink import SlackTopicSink


CONFIG = {
    'source': {'pagerduty': {'enabled': True, 'on_call_schedules': ['Primary'], 'window_seconds': 1}},
    'sinks': [
        {'name': 'ldap', 'module': 'ldap_sink', 'enabled': True, 'server_url': 'ldaps://ldap.example.com',
         'base_dn': 'dc=example,dc=com', 'mod_user_dn': 'cn=deputize', 'on_call_group': 'cn=oncall'},
        {'name': 'gitlab', 'module': 'gitlab_sink', 'enabled': False, 'base_url': 'https://gitlab.example.com',
         'group': 'approvers'},
        {'name': 'slack', 'module': 'slack_sink', 'enabled': True, 'channels': ['C1', 'C2']},
    ],
    'reconcile': {'max_workers': 1, 'dry_run': False},
    'logging': {'log_dir': None},
    'error_handling': {'max_retries': 3, 'retry_wait_seconds': 5},
    'notifications': {'enable_email': False},
}


class TestSinkLoading(unittest.TestCase):
    """Test cases for dynamic sink loading."""

    def test_load_each_sink_module(self):
        self.assertIs(load_sink_class('ldap_sink'), LDAPGroupSink)
        self.assertIs(load_sink_class('gitlab_sink'), GitlabGroupSink)
        self.assertIs(load_sink_class('slack_sink'), SlackTopicSink)

    def test_unknown_module(self):
        with self.assertRaises(ConfigurationError):
            load_sink_class('does_not_exist')

    def test_module_without_adapter(self):
        with self.assertRaises(ConfigurationError):
            load_sink_class('base')

    def test_build_sinks_skips_disabled_and_expands_channels(self):
        sinks = DeputizeApp.build_sinks(copy.deepcopy(CONFIG), SecretBundle())

        self.assertEqual([s.name for s in sinks], ['ldap', 'slack:C1', 'slack:C2'])


class TestDeputizeApp(unittest.TestCase):
    """Test cases for DeputizeApp.run exit codes."""

    def setUp(self):
        self.config = copy.deepcopy(CONFIG)
        patches = {
            'load_config': patch('deputize.main.load_config', return_value=self.config),
            'setup_logging': patch('deputize.main.setup_logging'),
            'load_secrets': patch('deputize.main.load_secrets', return_value=SecretBundle(pd_auth_token='pd')),
            'reconciler': patch('deputize.main.Reconciler'),
            'notify': patch('deputize.main.send_failure_notification'),
        }
        self.mocks = {}
        for name, patcher in patches.items():
            self.mocks[name] = patcher.start()
            self.addCleanup(patcher.stop)
        self.reconciler = self.mocks['reconciler'].return_value

    def test_success(self):
        self.reconciler.reconcile.return_value = ReconciliationReport(
            sinks=[SinkReport('ldap', SinkState.DONE)])

        self.assertEqual(DeputizeApp('config.yaml').run(), EXIT_OK)
        self.mocks['load_config'].assert_called_once_with('config.yaml')

    def test_reconciler_wiring(self):
        self.reconciler.reconcile.return_value = ReconciliationReport()

        DeputizeApp().run()

        config, roster_source, sinks = self.mocks['reconciler'].call_args[0]
        self.assertIs(config, self.config)
        self.assertEqual(roster_source.client.headers['Authorization'], 'Token token=pd')
        self.assertEqual(len(sinks), 3)
        self.assertIsNotNone(self.mocks['reconciler'].call_args[1]['notifier'])

    def test_sink_failure(self):
        self.reconciler.reconcile.return_value = ReconciliationReport(
            sinks=[SinkReport('ldap', SinkState.FAILED, errors=[RuntimeError("boom")])])

        self.assertEqual(DeputizeApp().run(), EXIT_SINK_FAILURE)

    def test_configuration_error(self):
        self.mocks['load_config'].side_effect = ConfigurationError("bad config")
        self.assertEqual(DeputizeApp().run(), EXIT_CONFIG_ERROR)

    def test_secrets_error(self):
        self.mocks['load_secrets'].side_effect = SecretsError("Missing secrets")
        self.assertEqual(DeputizeApp().run(), EXIT_CONFIG_ERROR)

    def test_roster_unavailable(self):
        self.reconciler.reconcile.side_effect = RosterUnavailable("PagerDuty down")

        self.assertEqual(DeputizeApp().run(), EXIT_ROSTER_UNAVAILABLE)
        self.mocks['notify'].assert_called_once()

    def test_unexpected_error(self):
        self.reconciler.reconcile.side_effect = RuntimeError("surprise")
        self.assertEqual(DeputizeApp().run(), EXIT_UNEXPECTED_ERROR)

    def test_dry_run_flag_overrides_config(self):
        self.reconciler.reconcile.return_value = ReconciliationReport()

        DeputizeApp(dry_run=True).run()

        self.assertTrue(self.mocks['reconciler'].call_args[0][0]['reconcile']['dry_run'])


def test_parser_oncall_options():
    args = create_parser().parse_args(['oncall', '-c', '/etc/deputize.yaml', '--dry-run'])

    assert args.command == 'oncall'
    assert args.config == '/etc/deputize.yaml'
    assert args.dry_run


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        create_parser().parse_args([])


def test_version_command(capsys):
    with pytest.raises(SystemExit) as exc:
        main(['version'])

    assert exc.value.code == 0
    assert capsys.readouterr().out.strip() == f"deputize {__version__}"


def test_oncall_command_exit_code(mocker):
    app_class = mocker.patch('deputize.main.DeputizeApp')
    app_class.return_value.run.return_value = EXIT_SINK_FAILURE

    with pytest.raises(SystemExit) as exc:
        main(['oncall', '--config', 'custom.yaml'])

    assert exc.value.code == EXIT_SINK_FAILURE
    app_class.assert_called_once_with(config_path='custom.yaml', dry_run=False)


if __name__ == '__main__':
    unittest.main()
