"""Derive current interface descriptors from a backend listing.

The listing only reports ports, networks and address assignments, so the
descriptor type has to be inferred:
- ``external`` when the network is external
- ``reserved_fixed_ip`` when the port name marks it as one
- ``subnet`` otherwise, unless the desired configuration attached the same
  network as ``any_subnet``

Compute instances list interfaces in attachment order, the first one being the
default. A bare-metal instance exposes a single trunk whose sub-ports follow it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from netattach.errors import InterfaceReadError
from netattach.schemas import (
    AttachedInterface,
    FloatingIP,
    FloatingIPSource,
    InterfaceDescriptor,
    InterfaceType,
)

logger = logging.getLogger(__name__)


def _any_subnet_networks(desired: Iterable[InterfaceDescriptor]) -> tuple[set[str], set[str]]:
    any_subnet, subnets = set(), set()
    for descriptor in desired:
        if descriptor.type == InterfaceType.ANY_SUBNET and descriptor.network_id:
            any_subnet.add(descriptor.network_id)
        elif descriptor.type == InterfaceType.SUBNET and descriptor.subnet_id:
            subnets.add(descriptor.subnet_id)
    return any_subnet, subnets


def descriptor_from_listing(
    iface: AttachedInterface,
    order: int,
    *,
    any_subnet_networks: set[str] | None = None,
    desired_subnets: set[str] | None = None,
) -> InterfaceDescriptor:
    """Build one descriptor from a listing entry with at least one address.

    A network typed ``any_subnet`` here is removed from ``any_subnet_networks``,
    so later ports on the same network keep the ``subnet`` type.
    """
    assignment = iface.ip_assignments[0]
    descriptor = InterfaceDescriptor(
        type=InterfaceType.SUBNET,
        network_id=iface.network_id or None,
        subnet_id=assignment.subnet_id or None,
        port_id=iface.port_id,
        ip_address=assignment.ip_address or None,
        order=order,
        security_groups=set(iface.security_groups),
        port_security_disabled=not iface.port_security_enabled,
    )

    if iface.network_details.external:
        descriptor.type = InterfaceType.EXTERNAL
    elif iface.is_reserved_fixed_ip:
        descriptor.type = InterfaceType.RESERVED_FIXED_IP
    elif (
        iface.network_id in (any_subnet_networks or set())
        and assignment.subnet_id not in (desired_subnets or set())
    ):
        descriptor.type = InterfaceType.ANY_SUBNET
        any_subnet_networks.discard(iface.network_id)

    if iface.floatingip_details:
        # The listing does not say whether the floating IP was created or reused
        descriptor.floating_ip = FloatingIP(
            source=FloatingIPSource.EXISTING,
            existing_floating_id=iface.floatingip_details[0].id,
        )
    return descriptor


def read_instance_interfaces(
    listing: list[AttachedInterface],
    desired: Iterable[InterfaceDescriptor] = (),
) -> list[InterfaceDescriptor]:
    """Current descriptors of a compute instance.

    Interfaces without an address assignment are skipped. Orders are the
    1-based positions of the remaining interfaces; the first is the default.
    """
    any_subnet, subnets = _any_subnet_networks(desired)
    descriptors = []
    for iface in listing:
        if not iface.ip_assignments:
            logger.debug(f"Skipping interface {iface.port_id} without IP assignments")
            continue
        descriptors.append(descriptor_from_listing(
            iface,
            len(descriptors) + 1,
            any_subnet_networks=any_subnet,
            desired_subnets=subnets,
        ))
    if descriptors:
        descriptors[0].is_default = True
    return descriptors


def read_baremetal_interfaces(
    listing: list[AttachedInterface],
    desired: Iterable[InterfaceDescriptor] = (),
) -> list[InterfaceDescriptor]:
    """Current descriptors of a bare-metal instance: trunk parent, then sub-ports.

    Raises:
        InterfaceReadError: If the listing does not hold exactly one trunk,
            or the trunk has no address assignment.
    """
    if len(listing) != 1:
        raise InterfaceReadError(
            f"bare-metal instance must expose exactly one trunk interface, got {len(listing)}"
        )
    trunk = listing[0]
    if not trunk.ip_assignments:
        raise InterfaceReadError(f"no IP assignments found in trunk interface {trunk.port_id}")

    any_subnet, subnets = _any_subnet_networks(desired)
    parent = descriptor_from_listing(
        trunk, 1, any_subnet_networks=any_subnet, desired_subnets=subnets
    )
    parent.is_parent = True
    descriptors = [parent]

    for sub_port in trunk.sub_ports:
        if not sub_port.ip_assignments:
            continue
        descriptors.append(descriptor_from_listing(
            sub_port,
            len(descriptors) + 1,
            any_subnet_networks=any_subnet,
            desired_subnets=subnets,
        ))
    return descriptors


def find_attached(
    listing: list[AttachedInterface],
    descriptor: InterfaceDescriptor,
    *,
    claimed_ports: set[str] | None = None,
    match_network: bool = True,
) -> AttachedInterface | None:
    """Find the listing entry (trunk sub-ports included) matching a descriptor.

    An external descriptor matches any external network. Otherwise an exact
    port, subnet or address match anywhere in the listing wins. Only then is
    an ``any_subnet`` descriptor matched by network, skipping ``claimed_ports``
    and taking the most recently attached port.

    Args:
        listing: Interface listing of one instance
        descriptor: Interface to look for
        claimed_ports: Ports known to belong to other interfaces
        match_network: Allow the ``any_subnet`` network fallback
    """
    candidates = [candidate for iface in listing for candidate in (iface, *iface.sub_ports)]

    if descriptor.type == InterfaceType.EXTERNAL:
        return next((c for c in candidates if c.network_details.external), None)

    if descriptor.port_id:
        for candidate in candidates:
            if candidate.port_id == descriptor.port_id:
                return candidate
    for candidate in candidates:
        for assignment in candidate.ip_assignments:
            if descriptor.subnet_id and assignment.subnet_id == descriptor.subnet_id:
                return candidate
            if descriptor.ip_address and assignment.ip_address == descriptor.ip_address:
                return candidate

    if not match_network or descriptor.type != InterfaceType.ANY_SUBNET or not descriptor.network_id:
        return None
    claimed = claimed_ports or set()
    on_network = [
        c for c in candidates
        if c.network_id == descriptor.network_id and c.port_id not in claimed
    ]
    return on_network[-1] if on_network else None
