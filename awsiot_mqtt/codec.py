"""
Symbolic tags for protocol enumerations.

Enum members are awkward to pass around from configuration and call sites, so
every protocol enumeration is remapped to lower-case string tags. The tag of a
member is its name, lower-cased, with each separator character replaced by ``-``:
``QOS0`` becomes ``'qos0'`` and ``MQTT_OVER_TLS`` becomes ``'mqtt-over-tls'``.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .models import QoS, ConnectionStatus, ConnectionType

_SEPARATORS = re.compile(r'[_\s]')


def tag_for_name(name: str) -> str:
    """Derive the symbolic tag for an enumeration constant name."""
    return _SEPARATORS.sub('-', name.lower())


@dataclass(frozen=True)
class EnumMapping:
    """Pair of inverse lookup tables between enum members and tags."""
    enum_type: type
    tags: Mapping[Enum, str] = field(repr=False)
    values: Mapping[str, Enum] = field(repr=False)

    def tag_of(self, value) -> Optional[str]:
        """Return the tag for an enum member, or None if it is not mapped."""
        try:
            return self.tags.get(value)
        except TypeError:
            return None

    def value_of(self, tag) -> Optional[Enum]:
        """Return the enum member for a tag, or None if the tag is unknown."""
        if not isinstance(tag, str):
            return None
        return self.values.get(tag)

    def __contains__(self, tag) -> bool:
        return self.value_of(tag) is not None


def build_mapping(enum_type: type, values: Optional[Iterable[Enum]] = None,
                  name_of: Optional[Callable[[Enum], str]] = None) -> EnumMapping:
    """
    Build the tag mapping for an enumeration.

    Args:
        enum_type: Enumeration class being mapped
        values: Members to map (defaults to every member of ``enum_type``)
        name_of: Function giving a member's canonical name (defaults to ``member.name``)

    Returns:
        Immutable EnumMapping

    Raises:
        ValueError: If two members derive the same tag
    """
    members = list(enum_type) if values is None else list(values)
    name_of = name_of or (lambda member: member.name)

    tags: dict = {}
    by_tag: dict = {}
    for member in members:
        tag = tag_for_name(name_of(member))
        if tag in by_tag and by_tag[tag] is not member:
            raise ValueError(
                f"{enum_type.__name__}: {by_tag[tag]!r} and {member!r} both map to tag '{tag}'"
            )
        tags[member] = tag
        by_tag[tag] = member

    return EnumMapping(enum_type, MappingProxyType(tags), MappingProxyType(by_tag))


QOS_TAGS = build_mapping(QoS)
CONNECTION_STATUS_TAGS = build_mapping(ConnectionStatus)
CONNECTION_TYPE_TAGS = build_mapping(ConnectionType)
