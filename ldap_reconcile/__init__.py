"""
LDAP Object Reconciler - Converge declared LDAP objects to their declared state.

This package computes the minimal attribute changes between a declared
directory object and the live entry on an LDAP server, and applies them.
"""

from ldap_reconcile.delta import Add, AttributeDelta, Remove, Replace, diff, diff_map, diff_set
from ldap_reconcile.entry import DeclaredObject, DirectoryEntry
from ldap_reconcile.errors import EncodingError, ImmutableDNError, NotFoundError, ProtocolError, ReconcileError
from ldap_reconcile.normalizer import attribute_set, parse_value, to_declared

__version__ = "1.0.0"
__author__ = "LDAP Reconcile Team"
