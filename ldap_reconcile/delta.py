"""
Delta computation between two declared attribute states.

The result is an ordered list of attribute deltas: all removals first, then
additions, then replacements. A name whose values changed only partially is
always expressed as a replacement carrying the complete new value list;
individual values are never added or deleted.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Set, Tuple

from ldap3 import MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE

from ldap_reconcile.entry import AttributeMap, AttributeSet, DeclaredAttributes
from ldap_reconcile.normalizer import parse_value, to_attribute_value, values_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributeDelta:
    """One change to apply to a directory attribute."""

    name: str
    values: Tuple[str, ...] = ()

    operation = None

    def __post_init__(self):
        object.__setattr__(self, 'values', tuple(self.values))


@dataclass(frozen=True)
class Add(AttributeDelta):
    operation = MODIFY_ADD


@dataclass(frozen=True)
class Remove(AttributeDelta):
    operation = MODIFY_DELETE


@dataclass(frozen=True)
class Replace(AttributeDelta):
    operation = MODIFY_REPLACE


def diff_map(old: AttributeMap, new: AttributeMap) -> List[AttributeDelta]:
    """
    Compute the deltas between two map-mode attribute states.

    Values are compared as plain strings, so re-ordering the members of a
    JSON array counts as a change.

    Args:
        old: Previous declared attributes
        new: Desired declared attributes

    Returns:
        Removals, then additions, then replacements
    """
    removed = [Remove(name) for name in sorted(old) if name not in new]
    added = [Add(name, parse_value(new[name])) for name in sorted(new) if name not in old]
    replaced = [
        Replace(name, parse_value(new[name]))
        for name in sorted(new)
        if name in old and old[name] != new[name]
    ]
    for delta in removed + added + replaced:
        logger.debug(f"Going to {type(delta).__name__.lower()} attribute {delta.name}")
    return removed + added + replaced


def _names(pairs: AttributeSet) -> Set[str]:
    return {name for name, _ in pairs}


def diff_set(old: AttributeSet, new: AttributeSet) -> List[AttributeDelta]:
    """
    Compute the deltas between two set-mode attribute states.

    Each ``(name, value)`` pair is classified as removed, added or kept. A
    name that only lost values is removed, a name that only gained values is
    added, and a name with any mix of statuses is replaced wholesale with all
    of its values in ``new``.

    Args:
        old: Previous declared attributes
        new: Desired declared attributes

    Returns:
        Removals, then additions, then replacements
    """
    removed_names = _names(old - new)
    added_names = _names(new - old)
    kept_names = _names(new & old)

    changed = set()
    removed = []
    for name in sorted(removed_names):
        if name in added_names or name in kept_names:
            changed.add(name)
        else:
            removed.append(Remove(name))

    added = []
    for name in sorted(added_names):
        if name in removed_names or name in kept_names:
            changed.add(name)
        else:
            added.append(Add(name, values_for(new, name)))

    replaced = [Replace(name, values_for(new, name)) for name in sorted(changed)]

    for delta in removed + added + replaced:
        logger.debug(f"Going to {type(delta).__name__.lower()} attribute {delta.name} {list(delta.values)}")
    return removed + added + replaced


def diff(old: DeclaredAttributes, new: DeclaredAttributes) -> List[AttributeDelta]:
    """
    Compute the deltas between two declared attribute states.

    Both states must use the same representation.

    Raises:
        TypeError: If one state is map-mode and the other set-mode
    """
    old_is_map = isinstance(old, Mapping)
    new_is_map = isinstance(new, Mapping)
    if old_is_map and new_is_map:
        return diff_map(old, new)
    if not old_is_map and not new_is_map:
        return diff_set(frozenset(old), frozenset(new))
    raise TypeError(
        f"Cannot diff {type(old).__name__} against {type(new).__name__}: "
        f"both states must be mappings or both must be sets"
    )


def to_ldap3_changes(deltas: Sequence[AttributeDelta]) -> Dict[str, list]:
    """
    Convert deltas into the ``changes`` argument of ``ldap3.Connection.modify``.

    Args:
        deltas: Attribute deltas in application order

    Returns:
        Mapping of attribute name to a list of ``(operation, values)`` tuples
    """
    changes = {}
    for delta in deltas:
        values = [to_attribute_value(delta.name, value) for value in delta.values]
        changes.setdefault(delta.name, []).append((delta.operation, values))
    return changes
