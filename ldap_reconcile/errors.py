"""
Exception hierarchy for LDAP object reconciliation.

Directory failures are split so that callers can tell a missing object
apart from every other protocol failure.
"""

from typing import Any, Dict, Optional


# LDAP result code for "noSuchObject"
NO_SUCH_OBJECT = 32


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""
    pass


class NotFoundError(ReconcileError):
    """Raised when no directory entry exists for a DN."""

    def __init__(self, dn: str, message: Optional[str] = None):
        self.dn = dn
        super().__init__(message or f"No such object: {dn}")


class ProtocolError(ReconcileError):
    """Raised for any directory failure other than a missing object."""

    def __init__(self, message: str, result: Optional[Dict[str, Any]] = None):
        self.result = result or {}
        super().__init__(message)

    @property
    def result_code(self) -> Optional[int]:
        return self.result.get('result')


class LDAPConnectionError(ProtocolError):
    """Raised when connecting or binding to the LDAP server fails."""
    pass


class EncodingError(ReconcileError):
    """Raised when attribute values cannot be serialized."""
    pass


class ImmutableDNError(ReconcileError, ValueError):
    """Raised when an object would have to be renamed to converge."""

    def __init__(self, current_dn: str, desired_dn: str):
        self.current_dn = current_dn
        self.desired_dn = desired_dn
        super().__init__(f"Cannot update {current_dn!r} into {desired_dn!r}, the DN is immutable")
