"""
Conversion between directory entries and declared attributes.

The directory represents an attribute as a name with an ordered list of
values. Declared state comes in two shapes:

- map mode: ``{name: value}`` where a multi-valued attribute is stored as a
  JSON array literal, e.g. ``{"mail": '["a@example.com","b@example.com"]'}``
- set mode: a frozenset of ``(name, value)`` pairs where a name repeats once
  per value.

The object class attribute and the entry's own RDN are never part of the
declared attributes.
"""

import json
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from ldap_reconcile.entry import (
    OBJECT_CLASS,
    AttributeMap,
    AttributeSet,
    DeclaredAttributes,
    DirectoryEntry,
)
from ldap_reconcile.errors import EncodingError

logger = logging.getLogger(__name__)


def parse_value(raw: str) -> List[str]:
    """
    Decode a declared value into its list of directory values.

    A value that looks like a JSON array of strings is decoded; anything
    else, including an array that fails to decode, is a single value.

    Args:
        raw: Declared attribute value

    Returns:
        List of directory values
    """
    if raw.lstrip().startswith('['):
        try:
            decoded = json.loads(raw)
        except ValueError as e:
            logger.debug(f"Could not decode {raw!r} as a JSON array, keeping it as a single value: {e}")
        else:
            if isinstance(decoded, list) and all(isinstance(v, str) for v in decoded):
                return decoded
            logger.debug(f"Value {raw!r} is not an array of strings, keeping it as a single value")
    return [raw]


def encode_values(values: Sequence[str]) -> str:
    """
    Encode a list of values as a JSON array literal.

    Raises:
        EncodingError: If the values cannot be serialized
    """
    try:
        return json.dumps(list(values), separators=(',', ':'), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Could not encode values {values!r}: {e}")


def is_skipped(name: str, skip_names: Iterable[str]) -> bool:
    """Check an attribute name against the skip list, ignoring case."""
    lowered = name.lower()
    return lowered == OBJECT_CLASS.lower() or any(lowered == s.lower() for s in skip_names)


def is_rdn(dn: str, name: str, values: Sequence[str]) -> bool:
    """Whether a single-valued attribute reconstructs the start of the DN."""
    return len(values) == 1 and dn.startswith(f"{name}={values[0]}")


def dn_key(dn: str):
    """
    Comparable form of a DN.

    Attribute types and values are case-folded and the whitespace around
    separators is dropped, so ``ou=a, DC=example`` and ``ou=a,dc=example``
    compare equal. A DN ldap3 cannot parse is compared as stripped text.
    """
    try:
        return [(t.lower(), v.lower(), sep) for t, v, sep in parse_dn(dn, strip=True)]
    except LDAPInvalidDnError:
        return dn.strip().lower()


def same_dn(first: str, second: str) -> bool:
    return dn_key(first) == dn_key(second)


def _declared_values(entry: DirectoryEntry, skip_names: Iterable[str]):
    """Yield ``(name, values)`` for the attributes that belong in declared state."""
    skip_names = list(skip_names)
    for name, values in entry.attributes.items():
        logger.debug(f"Treating attribute {name!r} of {entry.dn!r} ({len(values)} values)")
        if is_skipped(name, skip_names):
            logger.debug(f"Skipping attribute {name!r} of {entry.dn!r}")
            continue
        if is_rdn(entry.dn, name, values):
            logger.debug(f"Skipping RDN {name}={values[0]} of {entry.dn!r}")
            continue
        if not values:
            continue
        yield name, values


def to_declared_map(entry: DirectoryEntry, skip_names: Iterable[str] = ()) -> AttributeMap:
    """
    Project a directory entry onto map-mode declared attributes.

    Args:
        entry: Entry read from the directory
        skip_names: Attribute names to leave out besides the object class

    Returns:
        Mapping of attribute name to value or JSON array literal

    Raises:
        EncodingError: If a multi-valued attribute cannot be serialized
    """
    attributes = {}
    for name, values in _declared_values(entry, skip_names):
        if len(values) == 1:
            attributes[name] = values[0]
        else:
            attributes[name] = encode_values(values)
    return attributes


def to_declared_set(entry: DirectoryEntry, skip_names: Iterable[str] = ()) -> AttributeSet:
    """Project a directory entry onto set-mode declared attributes."""
    return frozenset(
        (name, value)
        for name, values in _declared_values(entry, skip_names)
        for value in values
    )


def to_declared(entry: DirectoryEntry, skip_names: Iterable[str] = (), set_mode: bool = False) -> DeclaredAttributes:
    if set_mode:
        return to_declared_set(entry, skip_names)
    return to_declared_map(entry, skip_names)


def values_for(attributes: AttributeSet, name: str) -> List[str]:
    """All values of ``name`` in a set-mode attribute set, sorted."""
    return sorted(value for attr, value in attributes if attr == name)


def is_scalar(value: Any) -> bool:
    return not isinstance(value, (Mapping, list, tuple, set, frozenset))


def attribute_set(pairs: Iterable[Union[Mapping[str, Any], Sequence[str]]]) -> AttributeSet:
    """
    Build set-mode declared attributes.

    Args:
        pairs: Single-entry mappings ``{name: value}`` or ``(name, value)`` tuples

    Returns:
        Frozenset of ``(name, value)`` pairs; duplicates collapse

    Raises:
        ValueError: If a mapping does not hold exactly one entry, or a value
            is a collection rather than a single value
    """
    result = set()
    for pair in pairs:
        if isinstance(pair, Mapping):
            if len(pair) != 1:
                raise ValueError(f"Attribute entries must have exactly one key, got {dict(pair)!r}")
            (name, value), = pair.items()
        else:
            name, value = pair
        if not is_scalar(value):
            raise ValueError(f"Attribute {name!r} must have a single value per entry, got {value!r}")
        result.add((str(name), str(value)))
    return frozenset(result)


def to_directory_attributes(declared: DeclaredAttributes, skip_names: Iterable[str] = ()) -> Dict[str, List[str]]:
    """
    Expand declared attributes into directory values, e.g. for an add request.

    Args:
        declared: Map-mode or set-mode declared attributes
        skip_names: Attribute names to leave out besides the object class

    Returns:
        Mapping of attribute name to list of values
    """
    skip_names = list(skip_names)
    if isinstance(declared, Mapping):
        return {
            name: parse_value(value)
            for name, value in declared.items()
            if not is_skipped(name, skip_names)
        }

    grouped = defaultdict(list)
    for name, value in sorted(declared):
        if not is_skipped(name, skip_names):
            grouped[name].append(value)
    return dict(grouped)


def to_attribute_value(name: str, value: str) -> Union[str, bytes]:
    """
    Encode a value for writing to the directory.

    Active Directory expects ``unicodePwd`` as the UTF-16-LE encoding of the
    password surrounded by double quotes.
    """
    if name.lower() == 'unicodepwd':
        return f'"{value}"'.encode('utf-16-le')
    return value
