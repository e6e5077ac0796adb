"""
Directory connectors for talking to Active Directory.

The model in ``ad_sync.directory`` only needs four things from a directory:
search, existence checks, entry creation and adding attribute values.
``DirectoryConnector`` defines that boundary and ``LDAPConnector`` implements
it on top of ldap3.
"""

import logging
import ssl
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Iterable

from ldap3 import Server, Connection, Tls, ALL, BASE, LEVEL, SUBTREE, MODIFY_ADD
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError

from ad_sync.retry import retry_call, create_retry_callback, is_retryable_error, MaxRetriesExceeded

logger = logging.getLogger(__name__)

SCOPES = {
    'base': BASE,
    'level': LEVEL,
    'subtree': SUBTREE,
}

# Attributes returned as raw bytes rather than decoded text.
BINARY_ATTRIBUTES = {'objectsid', 'objectguid', 'unicodepwd'}

RESULT_SUCCESS = 0
RESULT_NO_SUCH_OBJECT = 32

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'


class DirectoryConnectionError(Exception):
    """Raised when the directory connection fails."""
    pass


class DirectoryQueryError(Exception):
    """Raised when a directory search fails for a reason other than a missing base."""
    pass


class Entry:
    """
    A directory entry: a DN and case-insensitive multi-valued attributes.

    A missing attribute is not an error, ``get`` just returns an empty list.
    """

    def __init__(self, dn: str, attributes: Optional[Dict[str, Any]] = None):
        self.dn = dn
        self._attributes: Dict[str, List[Any]] = {}
        self._names: Dict[str, str] = {}
        for name, values in (attributes or {}).items():
            if values is None:
                continue
            if not isinstance(values, (list, tuple)):
                values = [values]
            self._attributes[name.lower()] = list(values)
            self._names[name.lower()] = name

    def get(self, name: str) -> List[Any]:
        return list(self._attributes.get(name.lower(), []))

    def first(self, name: str, default: Any = None) -> Any:
        values = self._attributes.get(name.lower())
        if not values:
            return default
        return values[0]

    def has(self, name: str) -> bool:
        return bool(self._attributes.get(name.lower()))

    @property
    def attribute_names(self) -> List[str]:
        return [self._names[key] for key in self._attributes]

    def __repr__(self):
        return f"Entry({self.dn!r})"


class OperationResult:
    """Result code and message of a directory write."""

    def __init__(self, code: int, message: str = ''):
        self.code = code
        self.message = message

    @property
    def success(self) -> bool:
        return self.code == RESULT_SUCCESS

    def __repr__(self):
        return f"OperationResult(code={self.code}, message={self.message!r})"


class DirectoryConnector(ABC):
    """Interface the directory model uses to read and write the remote directory."""

    @abstractmethod
    def search(self, base: str, search_filter: str, scope: str = 'subtree') -> Optional[List[Entry]]:
        """
        Search the directory.

        Args:
            base: Search base DN
            search_filter: LDAP filter string
            scope: ``base``, ``level`` or ``subtree``

        Returns:
            List of matching entries, or None when the base does not exist
        """

    @abstractmethod
    def create(self, path: str, attributes: Dict[str, Any]) -> OperationResult:
        """Create an entry at ``path`` with the given attributes."""

    @abstractmethod
    def add_values(self, path: str, attributes: Dict[str, List[Any]]) -> OperationResult:
        """Add values to multi-valued attributes of an existing entry."""

    def exists_at(self, path: str, search_filter: str = '(objectClass=*)') -> bool:
        """Return True if an entry matching the filter exists at ``path``."""
        return bool(self.search(path, search_filter, scope='base'))


class LDAPConnector(DirectoryConnector):
    """
    Directory connector backed by an ldap3 connection.

    Supports LDAPS, StartTLS and client certificates, and retries the initial
    connection using the configured error handling settings.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the connector with configuration.

        Args:
            config: Directory configuration dictionary (the ``directory`` section)
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']

        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 1000)

        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish and bind the connection, retrying transient failures.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between retries (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            DirectoryConnectionError: If connection fails after all retries
        """
        max_retries = max_retries or self.max_retries
        retry_wait = retry_wait or self.retry_wait

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except DirectoryConnectionError:
            raise
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create LDAP server: {e}")

        try:
            retry_call(
                self._open_and_bind,
                max_attempts=max_retries,
                delay=retry_wait,
                exceptions=(LDAPSocketOpenError, LDAPBindError, LDAPException),
                retry_if=is_retryable_error,
                on_retry=create_retry_callback("LDAP connection")
            )
        except MaxRetriesExceeded as e:
            raise DirectoryConnectionError(
                f"Failed to connect to LDAP after {e.attempts} attempts: {e.last_exception}"
            )

        self._connected = True
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _open_and_bind(self):
        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )

        try:
            if not self.connection.open():
                raise LDAPSocketOpenError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPException(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")
        except LDAPException:
            self._discard_connection()
            raise

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring unbind failure on broken connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for the connection.

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

        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close the connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _require_connection(self):
        if not self._connected:
            raise DirectoryQueryError("Not connected to LDAP server")

    def search(self, base: str, search_filter: str, scope: str = 'subtree') -> Optional[List[Entry]]:
        self._require_connection()

        try:
            search_scope = SCOPES[scope]
        except KeyError:
            raise DirectoryQueryError(f"Unknown search scope: {scope}")

        logger.debug(f"Searching with filter: {search_filter} in base: {base} (scope: {scope})")

        entries = []
        cookie = None
        try:
            while True:
                kwargs = {
                    'search_base': base,
                    'search_filter': search_filter,
                    'search_scope': search_scope,
                    'attributes': ['*'],
                }
                if search_scope != BASE:
                    kwargs['paged_size'] = self.page_size
                    if cookie:
                        kwargs['paged_cookie'] = cookie

                success = self.connection.search(**kwargs)
                result_code = self.connection.result.get('result')

                if not success:
                    if result_code == RESULT_NO_SUCH_OBJECT:
                        logger.debug(f"Search base not found: {base}")
                        return None
                    if result_code != RESULT_SUCCESS:
                        raise DirectoryQueryError(f"Search failed: {self.connection.result}")

                entries.extend(self._convert_response(self.connection.response))

                cookie = self._next_page_cookie()
                if not cookie:
                    break
        except LDAPException as e:
            raise DirectoryQueryError(f"LDAP query failed: {e}")

        return entries

    def _next_page_cookie(self) -> Optional[bytes]:
        controls = self.connection.result.get('controls') or {}
        control = controls.get(PAGED_RESULTS_CONTROL)
        if not control:
            return None
        return control.get('value', {}).get('cookie') or None

    def _convert_response(self, response: Iterable[Dict[str, Any]]) -> List[Entry]:
        """Turn ldap3 search response items into Entry objects."""
        entries = []
        for item in response or []:
            if item.get('type') != 'searchResEntry':
                continue

            attributes = {}
            for name, values in item.get('raw_attributes', {}).items():
                if name.lower() in BINARY_ATTRIBUTES:
                    attributes[name] = list(values)
                else:
                    attributes[name] = [
                        value.decode('utf-8', errors='replace') if isinstance(value, bytes) else value
                        for value in values
                    ]
            entries.append(Entry(item['dn'], attributes))
        return entries

    def create(self, path: str, attributes: Dict[str, Any]) -> OperationResult:
        self._require_connection()
        object_class = attributes.get('objectClass')
        other_attributes = {name: value for name, value in attributes.items() if name != 'objectClass'}

        try:
            self.connection.add(path, object_class, other_attributes)
        except LDAPException as e:
            return OperationResult(-1, str(e))

        return self._last_result()

    def add_values(self, path: str, attributes: Dict[str, List[Any]]) -> OperationResult:
        self._require_connection()
        changes = {name: [(MODIFY_ADD, list(values))] for name, values in attributes.items()}

        try:
            self.connection.modify(path, changes)
        except LDAPException as e:
            return OperationResult(-1, str(e))

        return self._last_result()

    def _last_result(self) -> OperationResult:
        result = self.connection.result or {}
        return OperationResult(result.get('result', -1), result.get('message') or result.get('description', ''))

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'connected': self._connected,
            'server_url': self.server_url,
            'use_ssl': self.use_ssl,
            'start_tls': self.start_tls,
            'verify_ssl': self.verify_ssl,
            'bind_dn': self.bind_dn,
            'page_size': self.page_size
        }

        if self.connection:
            stats.update({
                'server_host': getattr(self.connection.server, 'host', None),
                'server_port': getattr(self.connection.server, 'port', None),
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
