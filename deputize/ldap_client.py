"""
LDAP client for querying and modifying directory groups.

This module provides functionality to connect to LDAP servers, run paged
searches and add or delete individual values of a group's member attribute.
"""

import logging
import ssl
import time
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, MODIFY_ADD, MODIFY_DELETE, Tls
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError

logger = logging.getLogger(__name__)

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query or modify fails."""
    pass


class LDAPClient:
    """
    LDAP client for connecting to, searching and modifying a directory.

    Supports LDAPS and StartTLS with an optional CA bundle.
    """

    def __init__(self, config: Dict[str, Any], bind_password: Optional[str] = None):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP sink configuration dictionary
            bind_password: Password for the bind DN, supplied from secrets
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config.get('mod_user_dn') or config.get('bind_dn')
        self.bind_password = bind_password

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', not self.use_ssl)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 500)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self, max_attempts: int = 1, retry_wait: float = 5) -> bool:
        """
        Establish and bind the connection to the LDAP server.

        Args:
            max_attempts: Number of connection attempts before giving up
            retry_wait: Seconds to wait between attempts

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all attempts
        """
        try:
            tls_config = self._create_tls_config()
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=tls_config,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(max_attempts):
            try:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout
                )

                # open() signals failure by raising, it has no return value
                self.connection.open()

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPBindError(f"Bind failed: {self.connection.result}")

                self._connected = True
                logger.info(f"Connected and bound to LDAP server {self.server_url} as {self.bind_dn}")
                return True

            except (LDAPException, LDAPConnectionError) as e:
                last_exception = e
                logger.warning(f"LDAP connection attempt {attempt + 1}/{max_attempts} failed: {e}")
                self._discard_connection()
                if attempt < max_attempts - 1:
                    time.sleep(retry_wait)

        error_msg = f"Failed to connect to LDAP server {self.server_url} after {max_attempts} attempt(s)"
        if last_exception:
            error_msg += f": {last_exception}"
        raise LDAPConnectionError(error_msg)

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding LDAP connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def search(self, search_base: str, search_filter: str, attributes: List[str]) -> List[Dict[str, Any]]:
        """
        Run a subtree search and aggregate every page of results.

        Args:
            search_base: Base DN of the search
            search_filter: LDAP filter
            attributes: Attributes to return

        Returns:
            List of {'dn': ..., 'attributes': {name: [values]}} dictionaries

        Raises:
            LDAPQueryError: If any page of the search fails
        """
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        logger.debug(f"Searching with filter: {search_filter} in base: {search_base}")

        entries = []
        cookie = None
        page_count = 0

        try:
            while True:
                success = self.connection.search(
                    search_base=search_base,
                    search_filter=search_filter,
                    search_scope=SUBTREE,
                    attributes=attributes,
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )

                # search() is False for an empty but successful result
                if not success and self.connection.result.get('result') not in (0, None):
                    raise LDAPQueryError(f"Search failed: {self.connection.result}")

                page_count += 1
                entries.extend(self._process_search_results(attributes))

                cookie = self._next_page_cookie()
                if not cookie:
                    break

        except LDAPException as e:
            raise LDAPQueryError(f"LDAP search for {search_filter} failed: {e}")

        logger.debug(f"Retrieved {len(entries)} entries across {page_count} page(s)")
        return entries

    def _next_page_cookie(self) -> Optional[bytes]:
        controls = self.connection.result.get('controls') or {}
        control = controls.get(PAGED_RESULTS_CONTROL)
        if not control:
            return None
        return control.get('value', {}).get('cookie') or None

    def _process_search_results(self, attributes: List[str]) -> List[Dict[str, Any]]:
        """Convert the entries of the last response into plain dictionaries."""
        results = []
        for entry in self.connection.entries:
            # attribute names come back in the server's case
            returned = {name.lower(): value for name, value in entry.entry_attributes_as_dict.items()}
            values = {}
            for attribute in attributes:
                values[attribute] = [str(v) for v in returned.get(attribute.lower(), [])]
            results.append({'dn': str(entry.entry_dn), 'attributes': values})
        return results

    def modify_add(self, dn: str, attribute: str, values: List[str]):
        """Add values to a multi-valued attribute."""
        self._modify(dn, {attribute: [(MODIFY_ADD, list(values))]})

    def modify_delete(self, dn: str, attribute: str, values: List[str]):
        """Delete values from a multi-valued attribute."""
        self._modify(dn, {attribute: [(MODIFY_DELETE, list(values))]})

    def _modify(self, dn: str, changes: Dict[str, Any]):
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        try:
            if not self.connection.modify(dn, changes):
                raise LDAPQueryError(f"Modify of {dn} failed: {self.connection.result}")
        except LDAPException as e:
            raise LDAPQueryError(f"Modify of {dn} failed: {e}")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
