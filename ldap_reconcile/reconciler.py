"""
Lifecycle of a declared directory object.

``ObjectReconciler`` drives create, read, update and delete of one declared
object through an injected ``DirectoryClient``. Every write is followed by a
fresh read so the caller always gets the state the server actually holds.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

from ldap_reconcile.delta import AttributeDelta, diff
from ldap_reconcile.entry import DeclaredAttributes, DeclaredObject
from ldap_reconcile.errors import ImmutableDNError, NotFoundError
from ldap_reconcile.ldap_client import DirectoryClient
from ldap_reconcile.normalizer import is_skipped, same_dn, to_declared, to_directory_attributes

logger = logging.getLogger(__name__)

CREATE = 'create'
UPDATE = 'update'
NOOP = 'noop'


@dataclass
class Plan:
    """Changes needed to converge one object."""

    dn: str
    action: str
    deltas: List[AttributeDelta] = field(default_factory=list)
    object_classes: Optional[List[str]] = None
    # False when the state read back after writing still differs
    converged: bool = True

    @property
    def changed(self) -> bool:
        return self.action != NOOP


def without_skipped(attributes: DeclaredAttributes, skip_names: Iterable[str]) -> DeclaredAttributes:
    """Drop skipped attribute names from declared attributes of either mode."""
    skip_names = list(skip_names)
    if isinstance(attributes, Mapping):
        return {name: value for name, value in attributes.items() if not is_skipped(name, skip_names)}
    return frozenset((name, value) for name, value in attributes if not is_skipped(name, skip_names))


def classes_changed(old: Iterable[str], new: Iterable[str]) -> bool:
    """Object classes are a set; order and case do not matter."""
    return {c.lower() for c in old} != {c.lower() for c in new}


class ObjectReconciler:
    """
    Create, read, update and delete declared directory objects.

    The directory client is injected, so the reconciler itself holds no
    connection state.
    """

    def __init__(self, client: DirectoryClient):
        self.client = client

    def exists(self, obj: DeclaredObject) -> bool:
        return self.client.exists(obj.dn)

    def read(self, obj: DeclaredObject) -> Optional[DeclaredObject]:
        """
        Read the live state of an object in the shape of its declaration.

        Args:
            obj: Declared object; its DN, skip list and attribute mode are used

        Returns:
            The live object, or None if it no longer exists on the server

        Raises:
            ProtocolError: If the lookup fails for any other reason
            EncodingError: If live values cannot be serialized
        """
        try:
            entry = self.client.search_entry(obj.dn)
        except NotFoundError:
            logger.warning(f"Object {obj.dn!r} not found, it no longer exists in LDAP")
            return None

        return DeclaredObject(
            dn=entry.dn,
            object_classes=list(entry.object_classes),
            attributes=to_declared(entry, obj.skip_attributes, set_mode=obj.set_mode),
            skip_attributes=list(obj.skip_attributes),
        )

    def create(self, obj: DeclaredObject) -> Optional[DeclaredObject]:
        """
        Add an object to the directory and read it back.

        Raises:
            ProtocolError: If the server rejects the object
        """
        logger.info(f"Creating object {obj.dn!r}")
        attributes = to_directory_attributes(obj.attributes, obj.skip_attributes)
        for name, values in attributes.items():
            logger.debug(f"{obj.dn!r} has attribute {name} => {len(values)} value(s)")
        self.client.add(obj.dn, obj.object_classes, attributes)
        logger.info(f"Object {obj.dn!r} added to LDAP server")
        return self.read(obj)

    def plan(self, current: Optional[DeclaredObject], desired: DeclaredObject) -> Plan:
        """
        Compute the changes that converge ``current`` to ``desired``.

        Args:
            current: Previous state, or None if the object does not exist
            desired: Desired state

        Raises:
            ImmutableDNError: If the two objects name different entries
        """
        if current is None:
            return Plan(dn=desired.dn, action=CREATE)
        if not same_dn(current.dn, desired.dn):
            raise ImmutableDNError(current.dn, desired.dn)

        deltas = diff(
            without_skipped(current.attributes, desired.skip_attributes),
            without_skipped(desired.attributes, desired.skip_attributes),
        )
        object_classes = None
        if classes_changed(current.object_classes, desired.object_classes):
            object_classes = list(desired.object_classes)

        action = UPDATE if deltas or object_classes is not None else NOOP
        return Plan(dn=desired.dn, action=action, deltas=deltas, object_classes=object_classes)

    def update(self, current: Optional[DeclaredObject], desired: DeclaredObject) -> Optional[DeclaredObject]:
        """
        Modify an object so it matches ``desired`` and read it back.

        Raises:
            NotFoundError: If the object does not exist, including a
                ``current`` of None
            ProtocolError: If the server rejects the modification
        """
        plan = self.plan(current, desired)
        if plan.action == CREATE:
            raise NotFoundError(desired.dn, f"Cannot update {desired.dn!r}, it does not exist")
        if plan.changed:
            self._modify(plan)
        return self.read(desired)

    def _modify(self, plan: Plan):
        logger.info(f"Updating object {plan.dn!r} ({len(plan.deltas)} attribute changes)")
        if plan.object_classes is not None:
            logger.debug(f"Updating classes of {plan.dn!r}, new value: {plan.object_classes}")
        self.client.modify(plan.dn, plan.deltas, object_classes=plan.object_classes)

    def delete(self, obj: DeclaredObject, missing_ok: bool = False):
        """
        Remove an object from the directory.

        Args:
            obj: Object to remove
            missing_ok: Treat an already missing object as removed

        Raises:
            NotFoundError: If the object does not exist and ``missing_ok`` is False
            ProtocolError: If the server rejects the request
        """
        logger.info(f"Removing object {obj.dn!r}")
        try:
            self.client.delete(obj.dn)
        except NotFoundError:
            if not missing_ok:
                raise
            logger.info(f"Object {obj.dn!r} was already removed")
            return
        logger.debug(f"Object {obj.dn!r} removed")

    def apply(self, desired: DeclaredObject, dry_run: bool = False) -> Plan:
        """
        Converge the live object to its declaration.

        Reads the object, creates it when missing, otherwise applies the
        computed deltas. The object is read back after writing and
        ``converged`` on the returned plan tells whether the server now holds
        the declared state. Nothing is written when ``dry_run`` is set.

        Returns:
            The plan that was (or would have been) executed
        """
        plan = self.plan(self.read(desired), desired)
        if dry_run or not plan.changed:
            logger.info(f"Object {desired.dn!r}: {plan.action}{' (dry run)' if dry_run else ''}")
            return plan

        if plan.action == CREATE:
            live = self.create(desired)
        else:
            self._modify(plan)
            live = self.read(desired)

        remaining = self.plan(live, desired)
        if remaining.changed:
            plan.converged = False
            logger.warning(f"Object {desired.dn!r} still differs after {plan.action}: "
                           f"{remaining.action} with {len(remaining.deltas)} attribute changes pending")
        return plan
