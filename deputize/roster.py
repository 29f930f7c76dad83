"""
PagerDuty roster source.

Returns the email addresses of everyone on call, across a list of named
schedules, for a short window starting now.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Any, FrozenSet, Iterable

from deputize.errors import RosterUnavailable
from deputize.http_client import RestClient, APIError, DEFAULT_TIMEOUT
from deputize.retry import call_with_retries, MaxRetriesExceeded

logger = logging.getLogger(__name__)

PAGERDUTY_API_URL = 'https://api.pagerduty.com'
PAGERDUTY_ACCEPT = 'application/vnd.pagerduty+json;version=2'


class RosterSource(ABC):
    """Source of the desired on-call roster."""

    @abstractmethod
    def fetch_roster(self, schedule_names: Iterable[str], window_seconds: float) -> FrozenSet[str]:
        """
        Fetch the union of on-call users across schedules.

        Raises:
            RosterUnavailable: If the roster cannot be determined
        """
        pass


class PagerDutyRosterSource(RosterSource):
    """Roster source reading on-call users from the PagerDuty REST API."""

    def __init__(self, config: Dict[str, Any], auth_token: str, error_handling: Dict[str, Any] = None):
        """
        Initialize PagerDuty roster source.

        Args:
            config: source.pagerduty configuration
            auth_token: API token, or OAuth access token when with_oauth is set
            error_handling: Retry settings (max_retries, retry_wait_seconds)
        """
        self.config = config
        error_handling = error_handling or {}
        self.max_retries = error_handling.get('max_retries', 3)
        self.retry_wait = error_handling.get('retry_wait_seconds', 5)
        self.page_limit = config.get('page_limit', 100)

        if config.get('with_oauth', False):
            authorization = f"Bearer {auth_token}"
        else:
            authorization = f"Token token={auth_token}"

        self.client = RestClient(
            'PagerDuty',
            config.get('base_url', PAGERDUTY_API_URL),
            headers={'Authorization': authorization, 'Accept': PAGERDUTY_ACCEPT},
            timeout=config.get('timeout', DEFAULT_TIMEOUT),
            verify_ssl=config.get('verify_ssl', True)
        )

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return call_with_retries(
            lambda: self.client.request('GET', path, params=params),
            f"PagerDuty GET {path}",
            attempts=self.max_retries + 1,
            wait_seconds=self.retry_wait
        )

    def _find_schedules(self, name: str) -> List[Dict[str, Any]]:
        """Schedules whose name is exactly `name`."""
        matches = []
        offset = 0
        while True:
            response = self._get('/schedules', {'query': name, 'limit': self.page_limit,
                                                'offset': offset, 'total': 'true'})
            schedules = response.get('schedules', [])
            matches.extend(s for s in schedules if s.get('name') == name)
            if not response.get('more') or not schedules:
                return matches
            offset += len(schedules)

    def fetch_roster(self, schedule_names: Iterable[str], window_seconds: float = 1) -> FrozenSet[str]:
        """
        Fetch the emails of on-call users between now and now + window.

        Args:
            schedule_names: Exact PagerDuty schedule names
            window_seconds: Length of the on-call window

        Returns:
            Set of email addresses

        Raises:
            RosterUnavailable: If any PagerDuty call fails
        """
        now = datetime.now(timezone.utc)
        since = now.isoformat(timespec='seconds')
        until = (now + timedelta(seconds=window_seconds)).isoformat(timespec='seconds')

        emails = set()
        try:
            for name in schedule_names:
                schedules = self._find_schedules(name)
                if not schedules:
                    logger.warning(f"No PagerDuty schedule named '{name}'")

                for schedule in schedules:
                    logger.info(f"Getting on-call users for schedule '{name}' ({schedule['id']}) "
                                f"between {since} and {until}")
                    response = self._get(f"/schedules/{schedule['id']}/users",
                                         {'since': since, 'until': until})
                    for user in response.get('users', []):
                        if user.get('email'):
                            emails.add(user['email'])
        except (APIError, MaxRetriesExceeded) as e:
            raise RosterUnavailable(f"Unable to fetch on-call users from PagerDuty: {e}")
        finally:
            self.client.close_connection()

        logger.info(f"Current on-call users: {', '.join(sorted(emails)) or '(none)'}")
        return frozenset(emails)
