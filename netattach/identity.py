"""Identity resolution for interface descriptors.

The backend never echoes a client-chosen correlation ID, so "the same
interface" is recognised by the identifier that its type makes meaningful:
subnet for ``subnet``, network for ``any_subnet``, port for
``reserved_fixed_ip``, and a single shared key for ``external``.
"""

from __future__ import annotations

import logging

from netattach.errors import ConfigurationError
from netattach.schemas import InterfaceDescriptor, InterfaceType

logger = logging.getLogger(__name__)

EXTERNAL_KEY = "external"

# Fallback priority across all identifier fields
KEY_PRIORITY = ("subnet_id", "port_id", "network_id")

# Identifier fields meaningful for each interface type
TYPE_KEY_FIELDS: dict[InterfaceType, tuple[str, ...]] = {
    InterfaceType.SUBNET: ("subnet_id", "network_id"),
    InterfaceType.ANY_SUBNET: ("network_id",),
    InterfaceType.RESERVED_FIXED_IP: ("port_id",),
    InterfaceType.EXTERNAL: (),
}


def identity_key(descriptor: InterfaceDescriptor) -> str:
    """Return the stable identity key of a descriptor.

    Raises:
        ConfigurationError: If the descriptor carries no identifier usable
            for its type.
    """
    if descriptor.type == InterfaceType.EXTERNAL:
        return EXTERNAL_KEY

    allowed = TYPE_KEY_FIELDS[descriptor.type]
    for field in KEY_PRIORITY:
        if field not in allowed:
            continue
        value = getattr(descriptor, field)
        if value:
            return value

    raise ConfigurationError(
        f"interface {descriptor.describe()} has no {' or '.join(allowed)} to identify it by"
    )


def resolve_identities(descriptors: list[InterfaceDescriptor]) -> dict[str, InterfaceDescriptor]:
    """Map identity key -> descriptor, preserving list order.

    Raises:
        ConfigurationError: If two descriptors resolve to the same key.
    """
    resolved: dict[str, InterfaceDescriptor] = {}
    for descriptor in descriptors:
        key = identity_key(descriptor)
        existing = resolved.get(key)
        if existing is not None:
            raise ConfigurationError(
                f"interfaces {existing.describe()} and {descriptor.describe()} "
                f"both resolve to identity '{key}'"
            )
        resolved[key] = descriptor
    return resolved
