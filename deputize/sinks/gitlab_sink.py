"""
Gitlab group sink.

Manages the direct members of a Gitlab group (typically a merge request
approver group) through the REST API v4. Members at or above the protected
access level (Maintainer by default) are never removed.
"""

import logging
from typing import Dict, List, Any, FrozenSet
from urllib.parse import quote

from deputize.errors import SinkError, SnapshotUnavailable
from deputize.http_client import RestClient, APIError, DEFAULT_TIMEOUT
from .base import SinkAdapter

logger = logging.getLogger(__name__)

DEVELOPER_ACCESS = 30
MAINTAINER_ACCESS = 40

# Gitlab silently caps per_page at this value
MAX_PER_PAGE = 100


class GitlabGroupSink(SinkAdapter):
    """Sink adapter for Gitlab group membership."""

    def __init__(self, config: Dict[str, Any], secrets=None):
        super().__init__(config, secrets)

        self.group = config['group']
        self.access_level = config.get('access_level', DEVELOPER_ACCESS)
        self.protect_access_level = config.get('protect_access_level', MAINTAINER_ACCESS)
        self.per_page = min(config.get('per_page', MAX_PER_PAGE), MAX_PER_PAGE)

        self.client = None
        self.usernames = {}

    @property
    def group_path(self) -> str:
        return f"/groups/{quote(str(self.group), safe='')}"

    def open(self):
        token = self.secrets.gitlab_auth_token if self.secrets else None
        if not token:
            raise SinkError(f"{self.name}: no Gitlab auth token")

        self.client = RestClient(
            self.name,
            self.config['base_url'].rstrip('/') + '/api/v4',
            headers={'PRIVATE-TOKEN': token},
            timeout=self.config.get('timeout', DEFAULT_TIMEOUT),
            verify_ssl=self.config.get('verify_ssl', True),
            ca_cert_file=self.config.get('ca_cert_file')
        )

    def close(self):
        if self.client:
            self.client.close_connection()
            self.client = None

    def lookup_identity(self, entry: str) -> List[str]:
        users = self.client.request('GET', '/users', params={'search': entry})
        if len(users) > 1:
            for user in users:
                logger.info(f"Found Gitlab user '{user.get('username')}' for '{entry}'")
        return [str(user['id']) for user in users]

    def _list_members(self) -> List[Dict[str, Any]]:
        members = []
        page = 1
        while True:
            batch = self.client.request('GET', f"{self.group_path}/members",
                                        params={'per_page': self.per_page, 'page': page})
            members.extend(batch)
            if len(batch) < self.per_page:
                return members
            page += 1

    def read_snapshot(self) -> FrozenSet[str]:
        try:
            members = self._list_members()
        except APIError as e:
            raise SnapshotUnavailable(self.name, f"group {self.group}: {e}")

        self.usernames = {str(m['id']): m.get('username', '') for m in members}
        self._protected = frozenset(
            str(m['id']) for m in members if m.get('access_level', 0) >= self.protect_access_level
        )

        logger.info(f"Gitlab group {self.group} has {len(members)} member(s), "
                    f"{len(self._protected)} protected")
        return frozenset(self.usernames)

    def add_member(self, identity: str):
        self.client.request('POST', f"{self.group_path}/members",
                            body={'user_id': int(identity), 'access_level': self.access_level})

    def remove_member(self, identity: str):
        logger.debug(f"Removing Gitlab user {self.usernames.get(identity, identity)} from {self.group}")
        self.client.request('DELETE', f"{self.group_path}/members/{identity}")
