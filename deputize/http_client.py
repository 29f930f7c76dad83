"""
Minimal JSON-over-HTTPS client shared by the API integrations.

This module provides the HTTP connection handling, SSL context creation and
error mapping used by the PagerDuty roster source and the Gitlab and Slack
sinks. Every request is bounded by the configured timeout.
"""

import json
import ssl
import logging
from typing import Dict, Any, Optional, Union
from urllib.parse import urlparse, urlencode
from http.client import HTTPSConnection, HTTPConnection

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class APIAuthenticationError(APIError):
    """Raised when the API rejects our credentials."""
    pass


class RestClient:
    """
    JSON REST client built on http.client.

    Connections are opened lazily and reused for the lifetime of the client.
    """

    def __init__(self, name: str, base_url: str, headers: Optional[Dict[str, str]] = None,
                 timeout: float = DEFAULT_TIMEOUT, verify_ssl: bool = True,
                 ca_cert_file: Optional[str] = None):
        """
        Initialize REST client.

        Args:
            name: Name used in log and error messages
            base_url: API root, e.g. https://gitlab.example.com/api/v4
            headers: Headers sent with every request (auth, accept)
            timeout: Socket timeout in seconds for every call
            verify_ssl: Verify server certificates
            ca_cert_file: Optional PEM bundle of trusted CAs
        """
        self.name = name
        self.base_url = base_url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.ca_cert_file = ca_cert_file

        self.parsed_url = urlparse(base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self._setup_ssl_context()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.name}")
            return

        self.ssl_context = ssl.create_default_context()

        if self.ca_cert_file:
            try:
                self.ssl_context.load_verify_locations(cafile=self.ca_cert_file)
                logger.info(f"Loaded CA certificates for {self.name}: {self.ca_cert_file}")
            except (OSError, ssl.SSLError) as e:
                raise APIError(f"Failed to load CA file {self.ca_cert_file} for {self.name}: {e}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def build_path(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        full_path = self.base_path + '/' + path.lstrip('/')
        if params:
            full_path += '?' + urlencode(params, doseq=True)
        return full_path

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                body: Optional[Dict] = None, headers: Optional[Dict] = None) -> Any:
        """
        Make HTTP request to the API.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: Endpoint path relative to base_url
            params: Query string parameters
            body: JSON request body
            headers: Additional headers

        Returns:
            Parsed JSON response, or {} for an empty body

        Raises:
            APIAuthenticationError: On 401/403
            APIError: On any other failure, including timeouts
        """
        full_path = self.build_path(path, params)

        request_headers = {'Accept': 'application/json'}
        request_headers.update(self.headers)
        if headers:
            request_headers.update(headers)

        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers.setdefault('Content-Type', 'application/json')

        try:
            conn = self._get_connection()

            logger.debug(f"Making {method} request to {self.host}{self.build_path(path)}")
            conn.request(method, full_path, request_body, request_headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8')

            logger.debug(f"Response status: {response.status} {response.reason}")
        except (ConnectionError, OSError) as e:
            self.close_connection()
            raise APIError(f"Connection error to {self.name}: {e}")

        if response.status in (401, 403):
            raise APIAuthenticationError(f"Authentication failed for {self.name}: HTTP {response.status}",
                                         status_code=response.status)
        if response.status >= 400:
            raise APIError(f"HTTP {response.status} from {self.name} for {method} {path}: {response.reason}",
                           status_code=response.status)

        try:
            return json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response from {self.name}: {e}")

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
