"""Set-difference planning between current and desired interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field

from netattach.schemas import InterfaceDescriptor


@dataclass
class InterfaceDiff:
    """Raw detach/attach sets keyed by identity."""
    to_detach: dict[str, InterfaceDescriptor] = field(default_factory=dict)
    to_attach: dict[str, InterfaceDescriptor] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.to_detach and not self.to_attach


def plan_interface_changes(
    current: dict[str, InterfaceDescriptor],
    desired: dict[str, InterfaceDescriptor],
) -> InterfaceDiff:
    """Compute which interfaces leave and which arrive.

    Interfaces whose key is in both maps are left alone here; attribute
    drift on them (security groups) goes through a separate update path.

    Args:
        current: Keyed descriptors from the backend listing
        desired: Keyed descriptors from configuration

    Returns:
        InterfaceDiff with current-side descriptors to detach and
        desired-side descriptors to attach
    """
    return InterfaceDiff(
        to_detach={key: iface for key, iface in current.items() if key not in desired},
        to_attach={key: iface for key, iface in desired.items() if key not in current},
    )
