"""Configuration checks on desired interfaces.

All checks run before the first backend call and raise ``ConfigurationError``
on the first violation. Key operations:
- check_attribute_combinations: identifiers allowed/required per interface type
- check_floating_ip: floating IP source vs existing ID
- check_port_security: port security disabled excludes security groups
- check_single_primary: exactly one default (instance) or parent (bare metal)
- check_single_external / check_unique_subnets
"""

from __future__ import annotations

from collections.abc import Sequence

from netattach.errors import ConfigurationError
from netattach.schemas import FloatingIPSource, InterfaceDescriptor, InterfaceType


# type -> (required fields, forbidden fields)
_TYPE_FIELDS: dict[InterfaceType, tuple[tuple[str, ...], tuple[str, ...]]] = {
    InterfaceType.SUBNET: (("subnet_id", "network_id"), ("port_id",)),
    InterfaceType.ANY_SUBNET: (("network_id",), ("subnet_id", "port_id")),
    InterfaceType.RESERVED_FIXED_IP: (("port_id",), ("subnet_id", "network_id")),
    InterfaceType.EXTERNAL: ((), ("subnet_id", "network_id", "port_id")),
}


def check_attribute_combinations(descriptor: InterfaceDescriptor) -> None:
    required, forbidden = _TYPE_FIELDS[descriptor.type]
    missing = [field for field in required if not getattr(descriptor, field)]
    if missing:
        raise ConfigurationError(
            f"attributes {', '.join(missing)} must be set for '{descriptor.type.value}' interface type"
        )
    extra = [field for field in forbidden if getattr(descriptor, field)]
    if extra:
        raise ConfigurationError(
            f"you can't use {', '.join(extra)} attributes for '{descriptor.type.value}' interface type"
        )


def check_floating_ip(descriptor: InterfaceDescriptor) -> None:
    fip = descriptor.floating_ip
    if fip is None:
        return
    if descriptor.type == InterfaceType.EXTERNAL:
        raise ConfigurationError("floating IP cannot be used with 'external' interface type")
    if fip.source == FloatingIPSource.NEW and fip.existing_floating_id:
        raise ConfigurationError("you can't use existing_fip_id attribute for 'new' floating IP")
    if fip.source == FloatingIPSource.EXISTING and not fip.existing_floating_id:
        raise ConfigurationError("attribute existing_fip_id must be set for 'existing' floating IP")


def check_port_security(descriptor: InterfaceDescriptor) -> None:
    if descriptor.port_security_disabled and descriptor.security_groups:
        raise ConfigurationError(
            f"interface {descriptor.describe()} has port_security_disabled set, "
            "security_groups cannot be set"
        )


def check_single_primary(descriptors: Sequence[InterfaceDescriptor], *, baremetal: bool) -> None:
    if not descriptors:
        return
    flag = "is_parent" if baremetal else "is_default"
    count = sum(1 for d in descriptors if getattr(d, flag))
    if count != 1:
        raise ConfigurationError(
            f"you must always have exactly one interface with '{flag} = true', got {count}"
        )
    other = "is_default" if baremetal else "is_parent"
    if any(getattr(d, other) for d in descriptors):
        raise ConfigurationError(f"'{other}' is not supported for this resource class")


def check_single_external(descriptors: Sequence[InterfaceDescriptor]) -> None:
    if sum(1 for d in descriptors if d.type == InterfaceType.EXTERNAL) > 1:
        raise ConfigurationError("you can have no more than one interface with the type 'external'")


def check_unique_subnets(descriptors: Sequence[InterfaceDescriptor]) -> None:
    seen: dict[str, InterfaceDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.type != InterfaceType.SUBNET or not descriptor.subnet_id:
            continue
        if descriptor.subnet_id in seen:
            raise ConfigurationError(
                f"multiple interfaces in the same subnet: "
                f"{seen[descriptor.subnet_id].describe()} and {descriptor.describe()}"
            )
        seen[descriptor.subnet_id] = descriptor


def validate_interfaces(descriptors: Sequence[InterfaceDescriptor], *, baremetal: bool = False) -> None:
    """Run every desired-configuration check.

    Args:
        descriptors: Desired interfaces of one instance
        baremetal: Check for a trunk parent instead of a default interface

    Raises:
        ConfigurationError: On the first violated check.
    """
    for descriptor in descriptors:
        check_attribute_combinations(descriptor)
        check_floating_ip(descriptor)
        check_port_security(descriptor)
    check_single_primary(descriptors, baremetal=baremetal)
    check_single_external(descriptors)
    check_unique_subnets(descriptors)
