"""
LDAP client for reading and writing single directory objects.

This module wraps an ``ldap3`` connection behind the small set of operations
reconciliation needs: base-object search, add, modify and delete. A missing
object is reported as ``NotFoundError``; every other failure as
``ProtocolError``.
"""

import logging
import ssl
import time
from typing import Any, Dict, List, Optional, Sequence

from ldap3 import ALL, BASE, Connection, Server, Tls
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPException,
    LDAPNoSuchObjectResult,
    LDAPSocketOpenError,
    LDAPStartTLSError,
)

from ldap_reconcile.delta import AttributeDelta, Replace, to_ldap3_changes
from ldap_reconcile.entry import OBJECT_CLASS, DirectoryEntry
from ldap_reconcile.errors import (
    NO_SUCH_OBJECT,
    LDAPConnectionError,
    NotFoundError,
    ProtocolError,
)
from ldap_reconcile.normalizer import to_attribute_value

logger = logging.getLogger(__name__)

MATCH_ALL = '(objectClass=*)'


class DirectoryClient:
    """
    LDAP client for single-object reads and writes.

    Operations are single-shot: failures are raised to the caller and never
    retried. Only establishing the connection is retried.
    """

    def __init__(self, config: Dict[str, Any], connection: Optional[Connection] = None):
        """
        Initialize the client with configuration.

        Args:
            config: LDAP configuration dictionary
            connection: Already bound ``ldap3`` connection to use instead of
                connecting with ``config``
        """
        self.config = config
        self.server_url = config.get('server_url', '')
        self.bind_dn = config.get('bind_dn')
        self.bind_password = config.get('bind_password')

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = connection
        self._connected = connection is not None

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish and bind the connection to the LDAP server.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between attempts (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all attempts
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
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(max_retries):
            try:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout
                )

                if not self.connection.open():
                    raise LDAPSocketOpenError(f"Failed to open connection: {self.connection.result}")

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise LDAPStartTLSError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPBindError(f"Bind failed: {self.connection.result}")

                self._connected = True
                logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
                return True

            except LDAPException as e:
                last_exception = e
                logger.warning(f"LDAP connection attempt {attempt + 1}/{max_retries} failed: {e}")
                self._discard_connection()
                if attempt < max_retries - 1:
                    time.sleep(retry_wait)

        error_msg = f"Failed to connect to LDAP after {max_retries} attempts"
        if last_exception:
            error_msg += f": {last_exception}"
        raise LDAPConnectionError(error_msg)

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

        # Client certificate for mutual TLS
        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding connection: {e}")
            self.connection = None

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _require_connection(self):
        if not self._connected or self.connection is None:
            raise ProtocolError("Not connected to LDAP server")

    def _check_result(self, success: bool, dn: str, operation: str):
        """Raise the matching error if the last operation failed."""
        if success:
            logger.debug(f"{operation} of {dn!r} successful")
            return
        result = dict(self.connection.result or {})
        if result.get('result') == NO_SUCH_OBJECT:
            raise NotFoundError(dn)
        raise ProtocolError(
            f"{operation} of {dn!r} failed: {result.get('description')} {result.get('message', '')}".rstrip(),
            result
        )

    def _search_base(self, dn: str, attributes) -> bool:
        self._require_connection()
        try:
            return self.connection.search(
                search_base=dn,
                search_filter=MATCH_ALL,
                search_scope=BASE,
                attributes=attributes
            )
        except LDAPNoSuchObjectResult:
            raise NotFoundError(dn)
        except LDAPException as e:
            raise ProtocolError(f"Search for {dn!r} failed: {e}")

    def exists(self, dn: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            ProtocolError: If the lookup fails for any reason other than a missing object
        """
        logger.debug(f"Checking if {dn!r} exists")
        try:
            self._check_result(self._search_base(dn, None), dn, 'Lookup')
        except NotFoundError:
            logger.warning(f"Lookup for {dn!r} returned no object: deleted on server?")
            return False
        logger.debug(f"Object {dn!r} exists")
        return True

    def search_entry(self, dn: str) -> DirectoryEntry:
        """
        Read one object with all its user attributes.

        Args:
            dn: Distinguished name of the object

        Returns:
            The entry as read from the server

        Raises:
            NotFoundError: If the object does not exist
            ProtocolError: If the search fails or does not return exactly one entry
        """
        logger.debug(f"Looking for object {dn!r}")
        self._check_result(self._search_base(dn, ['*']), dn, 'Search')

        entries = [r for r in (self.connection.response or []) if r.get('type') == 'searchResEntry']
        if not entries:
            raise NotFoundError(dn)
        if len(entries) != 1:
            raise ProtocolError(f"Search for {dn!r} returned {len(entries)} entries, expected one")

        entry = self._to_entry(entries[0])
        logger.debug(f"Query for {dn!r} returned {len(entry.attributes)} attributes")
        return entry

    def _to_entry(self, response: Dict[str, Any]) -> DirectoryEntry:
        """Build a DirectoryEntry from one ldap3 search response."""
        attributes = {}
        object_classes = []
        for name, raw_values in response.get('raw_attributes', {}).items():
            values = [self._decode(name, v) for v in raw_values]
            if name.lower() == OBJECT_CLASS.lower():
                object_classes = values
            else:
                attributes[name] = values
        return DirectoryEntry(dn=response['dn'], object_classes=object_classes, attributes=attributes)

    @staticmethod
    def _decode(name: str, value) -> str:
        if isinstance(value, bytes):
            try:
                return value.decode('utf-8')
            except UnicodeDecodeError:
                logger.warning(f"Attribute {name!r} holds a non UTF-8 value, decoding with replacement")
                return value.decode('utf-8', errors='replace')
        return str(value)

    def add(self, dn: str, object_classes: Sequence[str], attributes: Dict[str, List[str]]):
        """
        Create an object.

        Args:
            dn: Distinguished name of the new object
            object_classes: Object classes of the new object
            attributes: Complete mapping of attribute name to values

        Raises:
            ProtocolError: If the server rejects the request
        """
        self._require_connection()
        encoded = {
            name: [to_attribute_value(name, v) for v in values]
            for name, values in attributes.items()
        }
        logger.debug(f"Creating {dn!r} with classes {list(object_classes)} and attributes {sorted(encoded)}")
        try:
            success = self.connection.add(dn, object_class=list(object_classes), attributes=encoded)
        except LDAPException as e:
            raise ProtocolError(f"Add of {dn!r} failed: {e}")
        self._check_result(success, dn, 'Add')

    def modify(self, dn: str, deltas: Sequence[AttributeDelta], object_classes: Optional[Sequence[str]] = None):
        """
        Apply attribute deltas, and optionally replace the object classes.

        Args:
            dn: Distinguished name of the object
            deltas: Attribute deltas in application order
            object_classes: New object classes, or None to leave them unchanged

        Raises:
            NotFoundError: If the object does not exist
            ProtocolError: If the server rejects the request
        """
        self._require_connection()
        deltas = list(deltas)
        if object_classes is not None:
            deltas.insert(0, Replace(OBJECT_CLASS, object_classes))
        changes = to_ldap3_changes(deltas)
        if not changes:
            logger.debug(f"Nothing to modify on {dn!r}")
            return

        logger.debug(f"Modifying {dn!r}: {', '.join(changes)}")
        try:
            success = self.connection.modify(dn, changes)
        except LDAPNoSuchObjectResult:
            raise NotFoundError(dn)
        except LDAPException as e:
            raise ProtocolError(f"Modify of {dn!r} failed: {e}")
        self._check_result(success, dn, 'Modify')

    def delete(self, dn: str):
        """
        Delete an object.

        Raises:
            NotFoundError: If the object does not exist
            ProtocolError: If the server rejects the request
        """
        self._require_connection()
        logger.debug(f"Removing {dn!r}")
        try:
            success = self.connection.delete(dn)
        except LDAPNoSuchObjectResult:
            raise NotFoundError(dn)
        except LDAPException as e:
            raise ProtocolError(f"Delete of {dn!r} failed: {e}")
        self._check_result(success, dn, 'Delete')

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
        }
        if self.connection:
            stats.update({
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })
        return stats

    def __enter__(self):
        if not self._connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
