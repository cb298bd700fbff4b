"""
Value types shared by the normalizer, the delta computer and the client.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Tuple, Union


OBJECT_CLASS = 'objectClass'

# Map mode: attribute name -> single value, multi-values as a JSON array
AttributeMap = Dict[str, str]
# Set mode: (name, value) pairs, one per value
AttributeSet = FrozenSet[Tuple[str, str]]
DeclaredAttributes = Union[AttributeMap, AttributeSet]


@dataclass
class DirectoryEntry:
    """A directory object as read from the server."""

    dn: str
    object_classes: List[str] = field(default_factory=list)
    attributes: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class DeclaredObject:
    """
    Desired state of one directory object.

    ``attributes`` is either a mapping (map mode) or a frozenset of
    ``(name, value)`` pairs (set mode).
    """

    dn: str
    object_classes: List[str]
    attributes: DeclaredAttributes = field(default_factory=dict)
    skip_attributes: List[str] = field(default_factory=list)

    @property
    def set_mode(self) -> bool:
        return not isinstance(self.attributes, Mapping)
