"""
LDAP group sink.

Keeps the member attribute of an on-call group (memberUid by default) in
line with the roster. Roster emails are resolved to uids by searching the
mail attribute; each uid is added or deleted with its own modify request.
"""

import logging
from typing import Dict, List, Any, FrozenSet
from ldap3.utils.conv import escape_filter_chars

from deputize.errors import SinkError, SnapshotUnavailable
from deputize.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError
from .base import SinkAdapter

logger = logging.getLogger(__name__)


class LDAPGroupSink(SinkAdapter):
    """Sink adapter for a group entry in an LDAP directory."""

    def __init__(self, config: Dict[str, Any], secrets=None):
        super().__init__(config, secrets)

        self.base_dn = config['base_dn']
        self.on_call_group = config['on_call_group']
        self.mail_attribute = config.get('mail_attribute', 'mail')
        self.user_attribute = config.get('user_attribute', 'uid')
        self.member_attribute = config.get('member_attribute', 'memberUid')
        self.connect_attempts = config.get('connect_attempts', 1)

        self.client = None
        self.group_dn = None

    @property
    def group_filter(self) -> str:
        group = self.on_call_group.strip()
        return group if group.startswith('(') else f"({group})"

    def open(self):
        password = self.secrets.ldap_mod_user_password if self.secrets else None
        self.client = LDAPClient(self.config, bind_password=password)
        try:
            self.client.connect(max_attempts=self.connect_attempts)
        except LDAPConnectionError as e:
            self.client = None
            raise SinkError(f"{self.name}: {e}")

    def close(self):
        if self.client:
            self.client.disconnect()
            self.client = None

    def lookup_identity(self, entry: str) -> List[str]:
        search_filter = f"({self.mail_attribute}={escape_filter_chars(entry)})"
        results = self.client.search(self.base_dn, search_filter, [self.user_attribute])

        uids = []
        for result in results:
            values = result['attributes'].get(self.user_attribute) or []
            if not values:
                logger.warning(f"Entry {result['dn']} matching '{entry}' has no {self.user_attribute}")
                continue
            uids.append(values[0])
        return uids

    def read_snapshot(self) -> FrozenSet[str]:
        try:
            results = self.client.search(self.base_dn, self.group_filter, [self.member_attribute])
        except LDAPQueryError as e:
            raise SnapshotUnavailable(self.name, str(e))

        if len(results) != 1:
            raise SnapshotUnavailable(
                self.name, f"expected one group matching {self.group_filter}, found {len(results)}")

        self.group_dn = results[0]['dn']
        members = frozenset(results[0]['attributes'].get(self.member_attribute) or [])
        logger.info(f"Group {self.group_dn} has {len(members)} member(s): {', '.join(sorted(members))}")
        return members

    def _require_group(self) -> str:
        if not self.group_dn:
            raise SinkError(f"{self.name}: group DN unknown, read the snapshot first")
        return self.group_dn

    def add_member(self, identity: str):
        self.client.modify_add(self._require_group(), self.member_attribute, [identity])

    def remove_member(self, identity: str):
        self.client.modify_delete(self._require_group(), self.member_attribute, [identity])
