"""
Base user store interface and common HTTP functionality.

This module defines the abstract base class that every target user store adapter
must implement, along with an HTTP/JSON client base carrying the SSL and
authentication handling shared by REST-backed stores.
"""

import json
import ssl
import base64
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Union
from urllib.parse import urlparse, urljoin, urlencode
from http.client import HTTPSConnection, HTTPConnection

from ldap_reconcile.models import TargetUserRecord, Responsibility

logger = logging.getLogger(__name__)


class UserStoreError(Exception):
    """Base exception for user store errors."""
    pass


class UserStoreAuthenticationError(UserStoreError):
    """Raised when authentication to the user store fails."""
    pass


class UserStoreBase(ABC):
    """
    Abstract base class for target user store adapters.

    Lookups return lists so callers can detect duplicate records; the store is
    expected to enforce uniqueness of login and external id.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.name = self.config.get('name', self.__class__.__name__)

    def authenticate(self) -> bool:
        """
        Perform any authentication steps needed before the first call.

        Returns:
            True if authentication successful
        """
        return True

    def close_connection(self):
        """Release any open connection."""
        pass

    @abstractmethod
    def find_by_email(self, email: str) -> List[TargetUserRecord]:
        """Return every record whose login equals ``email`` exactly."""
        pass

    @abstractmethod
    def find_by_external_id(self, external_id: str) -> List[TargetUserRecord]:
        """Return every record carrying ``external_id``."""
        pass

    @abstractmethod
    def create(self, login_email: str, display_name: str, external_id: str) -> TargetUserRecord:
        """
        Create an externally authenticated account.

        Raises:
            UserStoreError: If the store rejects the creation
        """
        pass

    @abstractmethod
    def update(self, record: TargetUserRecord) -> None:
        """
        Persist in-place changes of login, name and disabled reason.

        Raises:
            UserStoreError: If the store rejects the update
        """
        pass

    @abstractmethod
    def enumerate_all(self) -> List[TargetUserRecord]:
        """Return every account of the store."""
        pass

    @abstractmethod
    def responsibilities(self, record: TargetUserRecord) -> List[Responsibility]:
        """Return the components the user owns as default assignee or QA contact."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close_connection()


class HTTPUserStoreBase(UserStoreBase):
    """
    User store reached over an HTTP/JSON API.

    Provides connection handling, SSL context setup and Basic or Bearer
    authentication for subclasses.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize HTTP store client.

        Args:
            config: Store configuration dictionary
        """
        super().__init__(config)
        self.base_url = config['base_url']
        self.auth_config = config.get('auth') or {}
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', 30)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self.auth_headers = {}

        self._setup_ssl_context()
        self._setup_authentication()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.name}")
            return

        self.ssl_context = ssl.create_default_context()

        ca_cert_file = self.config.get('ca_cert_file')
        if ca_cert_file:
            try:
                self.ssl_context.load_verify_locations(cafile=ca_cert_file)
                logger.info(f"Loaded CA certificates: {ca_cert_file}")
            except (OSError, ssl.SSLError) as e:
                raise UserStoreError(f"Failed to load CA certificates {ca_cert_file}: {e}")

    def _setup_authentication(self):
        """Set up authentication headers based on configuration."""
        auth_method = self.auth_config.get('method', '').lower()

        if auth_method == 'basic':
            username = self.auth_config.get('username')
            password = self.auth_config.get('password')
            if username and password:
                credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
                self.auth_headers['Authorization'] = f"Basic {credentials}"
                logger.debug(f"Configured Basic authentication for {self.name}")
            else:
                logger.error(f"Basic auth configured but missing username or password for {self.name}")

        elif auth_method in ('token', 'bearer'):
            token = self.auth_config.get('token')
            if token:
                self.auth_headers['Authorization'] = f"Bearer {token}"
                logger.debug(f"Configured Bearer token authentication for {self.name}")
            else:
                logger.error(f"Token auth configured but missing token for {self.name}")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for {self.name}")
        else:
            logger.debug(f"No authentication method configured for {self.name}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def request(self, method: str, path: str, body: Optional[Dict] = None,
                params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make HTTP request to the store API.

        Args:
            method: HTTP method (GET, POST, PUT)
            path: API endpoint path (relative to base_url)
            body: JSON request body
            params: Query string parameters

        Returns:
            Parsed JSON response

        Raises:
            UserStoreAuthenticationError: On HTTP 401/403
            UserStoreError: If the request fails
        """
        full_path = urljoin(self.base_path + '/', path.lstrip('/'))
        if params:
            full_path = f"{full_path}?{urlencode(params)}"

        request_headers = dict(self.auth_headers)
        request_headers['Accept'] = 'application/json'

        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers['Content-Type'] = 'application/json'

        try:
            conn = self._get_connection()

            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, request_headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8')

            logger.debug(f"Response status: {response.status} {response.reason}")
        except (ConnectionError, OSError) as e:
            self.close_connection()
            raise UserStoreError(f"Connection error to {self.name}: {e}")

        if response.status in (401, 403):
            raise UserStoreAuthenticationError(f"Authentication failed for {self.name}")
        if response.status >= 400:
            raise UserStoreError(f"HTTP {response.status}: {response.reason} {response_data[:200]}".strip())

        try:
            return json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            raise UserStoreError(f"Invalid JSON response from {self.name}: {e}")

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None
