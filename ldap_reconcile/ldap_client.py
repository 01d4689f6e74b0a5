"""
LDAP client for connecting to and crawling LDAP directories.

This module provides functionality to bind to one directory source and walk a
search result set page by page using the simple paged results control.
"""

import logging
import ssl
from typing import Dict, Iterator, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, NONE, ALL_ATTRIBUTES, Tls
from ldap3.core.exceptions import LDAPException

from ldap_reconcile.models import DirectorySourceConfig

logger = logging.getLogger(__name__)

PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'


class LDAPConnectionError(Exception):
    """Raised when LDAP connection or bind fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query fails."""
    pass


class LDAPClient:
    """
    LDAP client for one directory source.

    Binds with the configured credentials (or anonymously) and exposes the
    search result set as a lazy sequence of pages.
    """

    def __init__(self, source: DirectorySourceConfig):
        """
        Initialize LDAP client with a source configuration.

        Args:
            source: Directory source settings
        """
        self.source = source
        self.server = None
        self.connection = None
        self._connected = False

    def connect(self) -> bool:
        """
        Open the connection and bind.

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If the server is unreachable or the bind is rejected
        """
        source = self.source
        logger.info(f"Connecting to: server '{source.server}' ({source.port})")

        try:
            self.server = Server(
                source.server,
                port=source.port,
                use_ssl=source.use_ssl,
                tls=self._create_tls_config(),
                get_info=NONE,
                connect_timeout=source.connection_timeout
            )
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        try:
            if source.bind_user:
                logger.info(f"Connecting to LDAP/AD server as: '{source.bind_user}'")
                self.connection = Connection(
                    self.server,
                    user=source.bind_user,
                    password=source.bind_password,
                    auto_bind=False
                )
            else:
                logger.info("Connecting to LDAP/AD server anonymously")
                self.connection = Connection(self.server, auto_bind=False)

            # open() returns nothing; failures surface as LDAPException
            self.connection.open()

            if source.start_tls and not source.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPConnectionError(f"Bind failed: {self.connection.result}")

        except LDAPConnectionError:
            self._drop_connection()
            raise
        except LDAPException as e:
            self._drop_connection()
            raise LDAPConnectionError(f"Failed to connect to {source.server}: {e}")

        self._connected = True
        logger.debug(f"Bound to LDAP server {source.server}")
        return True

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.source.use_ssl or self.source.start_tls):
            return None

        tls_config = {}

        if not self.source.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.source.ca_cert_file:
            tls_config['ca_certs_file'] = self.source.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.source.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Error while dropping LDAP connection: {e}")
            self.connection = None

    def disconnect(self):
        """Unbind and close the LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def paged_search(self, base_dn: str, search_filter: str,
                     attributes: Optional[List[str]] = None,
                     page_size: Optional[int] = None) -> Iterator[List[Dict[str, Any]]]:
        """
        Walk a subtree search one page at a time.

        Args:
            base_dn: Search base
            search_filter: LDAP filter
            attributes: Attributes to fetch, None for every readable attribute
            page_size: Entries per page (defaults to the source page size)

        Yields:
            One list of raw entries (``{'dn': ..., 'attributes': ...}``) per page

        Raises:
            LDAPQueryError: If a page cannot be fetched; the outstanding cookie
                has been released first
        """
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        page_size = page_size or self.source.page_size
        attributes = attributes or ALL_ATTRIBUTES
        cookie = None
        page_count = 0
        entry_count = 0

        try:
            while True:
                try:
                    self.connection.search(
                        search_base=base_dn,
                        search_filter=search_filter,
                        search_scope=SUBTREE,
                        attributes=attributes,
                        paged_size=page_size,
                        paged_cookie=cookie
                    )
                except LDAPException as e:
                    raise LDAPQueryError(f"LDAP FAILURE: {e}")

                result = self.connection.result or {}
                if result.get('result', 0) != 0:
                    raise LDAPQueryError(
                        f"LDAP FAILURE: {result.get('description')} {result.get('message', '')}".strip()
                    )

                entries = self._page_entries()
                page_count += 1
                entry_count += len(entries)
                logger.debug(f"Page {page_count}: Retrieved {len(entries)} entries")

                cookie = self._paged_cookie(result)
                yield entries

                if not cookie:
                    break
        finally:
            if cookie:
                self._release_cookie(base_dn, search_filter, cookie)

        logger.info(f"Retrieved {entry_count} entries across {page_count} pages")

    def _page_entries(self) -> List[Dict[str, Any]]:
        entries = []
        for item in self.connection.response or []:
            if item.get('type', 'searchResEntry') != 'searchResEntry':
                continue
            entries.append({
                'dn': item.get('dn', ''),
                'attributes': item.get('attributes', {})
            })
        return entries

    @staticmethod
    def _paged_cookie(result: Dict[str, Any]) -> Optional[bytes]:
        control = (result.get('controls') or {}).get(PAGED_RESULTS_OID)
        if not control:
            return None
        return (control.get('value') or {}).get('cookie') or None

    def _release_cookie(self, base_dn: str, search_filter: str, cookie: bytes):
        """Tell the server the paged search is abandoned."""
        logger.warning("Abnormal exit from paged search, releasing server-side cursor")
        try:
            self.connection.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=[],
                paged_size=0,
                paged_cookie=cookie
            )
        except Exception as e:
            logger.warning(f"Failed to release paged search cursor: {e}")

    def test_connection(self) -> bool:
        """
        Bind and unbind without throwing exceptions.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self.connect()
            return True
        except LDAPConnectionError as e:
            logger.debug(f"Connection test failed: {e}")
            return False
        finally:
            self.disconnect()

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
