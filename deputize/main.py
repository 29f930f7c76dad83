"""
Command line entry point for deputize.

`deputize oncall` runs one reconciliation pass: load configuration and
secrets, build the roster source and the sinks, reconcile and print a
summary. The exit code tells a scheduler what happened.
"""

import sys
import logging
import argparse
import importlib
from typing import Dict, Any, List, Optional

from deputize import __version__
from deputize.config import load_config, enabled_sinks, ConfigurationError
from deputize.errors import RosterUnavailable
from deputize.logging_setup import setup_logging
from deputize.models import ReconciliationReport
from deputize.notifications import EmailNotifier, send_failure_notification
from deputize.reconciler import Reconciler
from deputize.roster import PagerDutyRosterSource
from deputize.secrets import load_secrets, SecretsError, SecretBundle
from deputize.sinks.base import SinkAdapter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SINK_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_ROSTER_UNAVAILABLE = 3
EXIT_UNEXPECTED_ERROR = 4


class DeputizeApp:
    """
    Wires configuration, secrets, roster source and sinks into a Reconciler.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file
            dry_run: Compute and report plans without applying them
        """
        self.config_path = config_path
        self.dry_run = dry_run
        self.config = None
        self.secrets = None

    def run(self) -> int:
        """
        Run one reconciliation pass.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))
            logger.info(f"Starting deputize {__version__}")

            self.secrets = load_secrets(self.config)
            reconciler = self.build_reconciler()
            report = reconciler.reconcile()

            self._print_summary(report)

            if not report.ok:
                logger.warning(f"Reconciliation completed with {len(report.failed_sinks)} sink failure(s)")
                return EXIT_SINK_FAILURE
            logger.info("Reconciliation completed successfully")
            return EXIT_OK

        except (ConfigurationError, SecretsError) as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except RosterUnavailable as e:
            logger.error(f"On-call roster unavailable: {e}")
            print(f"On-call roster unavailable: {e}", file=sys.stderr)
            self._send_failure_notification("On-Call Roster Unavailable", str(e))
            return EXIT_ROSTER_UNAVAILABLE
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            print(f"Unexpected error: {e}", file=sys.stderr)
            self._send_failure_notification("Reconciliation Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR

    def _load_configuration(self):
        self.config = load_config(self.config_path)
        if self.dry_run:
            self.config['reconcile']['dry_run'] = True

    def build_reconciler(self) -> Reconciler:
        """Create the roster source, the sinks and the notifier from configuration."""
        roster_source = PagerDutyRosterSource(
            self.config['source']['pagerduty'],
            self.secrets.pd_auth_token,
            self.config.get('error_handling', {})
        )
        sinks = self.build_sinks(self.config, self.secrets)
        notifier = EmailNotifier(self.config.get('notifications', {}))
        return Reconciler(self.config, roster_source, sinks, notifier=notifier)

    @staticmethod
    def build_sinks(config: Dict[str, Any], secrets: SecretBundle) -> List[SinkAdapter]:
        """Instantiate every enabled sink; one entry may expand to several adapters."""
        sinks = []
        for sink_config in enabled_sinks(config):
            sink_class = load_sink_class(sink_config['module'])
            sinks.extend(sink_class.from_config(sink_config, secrets))
        logger.info(f"Configured sinks: {', '.join(sink.name for sink in sinks)}")
        return sinks

    def _print_summary(self, report: ReconciliationReport):
        for line in report.summary_lines():
            print(line)

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for failures."""
        if not self.config:
            return
        try:
            send_failure_notification(title, error_message, self.config.get('notifications', {}))
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")


def load_sink_class(module_name: str) -> type:
    """
    Dynamically load a sink module and find its SinkAdapter subclass.

    Raises:
        ConfigurationError: If the module cannot be imported or has no adapter
    """
    try:
        sink_module = importlib.import_module(f"deputize.sinks.{module_name}")
    except ImportError as e:
        raise ConfigurationError(f"Failed to import sink module {module_name}: {e}")

    for attr_name in dir(sink_module):
        attr = getattr(sink_module, attr_name)
        if (isinstance(attr, type) and
                issubclass(attr, SinkAdapter) and
                attr is not SinkAdapter and
                attr.__module__ == sink_module.__name__):
            return attr

    raise ConfigurationError(f"No SinkAdapter subclass found in module {module_name}")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='deputize',
        description='Reconcile LDAP, Gitlab and Slack memberships with the PagerDuty on-call roster'
    )
    subparsers = parser.add_subparsers(dest='command', metavar='command')
    subparsers.required = True

    oncall = subparsers.add_parser('oncall', help='Run one reconciliation pass')
    oncall.add_argument('--config', '-c', help='Path to configuration file')
    oncall.add_argument('--dry-run', action='store_true',
                        help='Report planned changes without applying them')

    subparsers.add_parser('version', help='Print the version')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = create_parser().parse_args(argv)

    if args.command == 'version':
        print(f"deputize {__version__}")
        sys.exit(EXIT_OK)

    app = DeputizeApp(config_path=args.config, dry_run=args.dry_run)
    sys.exit(app.run())


if __name__ == "__main__":
    main()
