"""Ordering correction for the default/parent interface.

The backend has no "move interface to position N" primitive: attachment order
is purely a function of call sequence. The only way to put an interface first
is to vacate every slot ahead of it and refill them afterwards.

Contract of ``correct_order``:
1. Locate the desired default/parent key in ``current``.
   - Attached at position p: everything at a position < p is force-detached,
     and force-reattached when it survives into ``desired``. The default itself
     stays where it is.
   - Not attached: everything currently attached is force-detached, survivors
     are force-reattached after the new default.
2. Trunk mode (bare metal): a current parent interface can never be detached.
   Any plan that needs it is a configuration error.
3. Detach in descending current order; attach with an explicit two-key sort:
   default/parent first, then ascending desired order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from netattach.errors import ConfigurationError
from netattach.planner import InterfaceDiff
from netattach.schemas import InterfaceDescriptor

logger = logging.getLogger(__name__)


@dataclass
class ReconcilePlan:
    """Ordered detach/attach sequence for one instance."""
    detach: list[tuple[str, InterfaceDescriptor]] = field(default_factory=list)
    attach: list[tuple[str, InterfaceDescriptor]] = field(default_factory=list)
    default_key: str | None = None
    reattach_keys: set[str] = field(default_factory=set)  # Moved only to fix ordering

    @property
    def is_empty(self) -> bool:
        return not self.detach and not self.attach

    @property
    def detach_keys(self) -> list[str]:
        return [key for key, _ in self.detach]

    @property
    def attach_keys(self) -> list[str]:
        return [key for key, _ in self.attach]


def detach_sort_key(descriptor: InterfaceDescriptor) -> int:
    """Highest current order detaches first."""
    return -(descriptor.order or 0)


def attach_sort_key(descriptor: InterfaceDescriptor) -> tuple[int, int]:
    """Default/parent first, then ascending desired order."""
    return (0 if descriptor.is_primary else 1, descriptor.order or 0)


def _find_default_key(desired: dict[str, InterfaceDescriptor]) -> str | None:
    for key, descriptor in desired.items():
        if descriptor.is_primary:
            return key
    return None


def correct_order(
    current: dict[str, InterfaceDescriptor],
    desired: dict[str, InterfaceDescriptor],
    diff: InterfaceDiff,
    *,
    trunk: bool = False,
) -> ReconcilePlan:
    """Extend a raw diff so the desired default/parent ends up first.

    Args:
        current: Keyed current descriptors, ``order`` populated
        desired: Keyed desired descriptors, ``order`` populated
        diff: Raw set difference from ``plan_interface_changes``
        trunk: Apply bare-metal parent immutability

    Returns:
        ReconcilePlan with both sequences sorted for execution

    Raises:
        ConfigurationError: In trunk mode, if the parent would be detached.
    """
    to_detach = dict(diff.to_detach)
    to_attach = dict(diff.to_attach)
    reattach_keys: set[str] = set()

    default_key = _find_default_key(desired)
    if default_key is not None and current:
        by_order = sorted(current.items(), key=lambda item: item[1].order or 0)
        if default_key in current:
            position = current[default_key].order or 0
            ahead = [(key, iface) for key, iface in by_order if (iface.order or 0) < position]
        else:
            ahead = by_order

        for key, iface in ahead:
            to_detach[key] = iface
            if key in desired and key not in to_attach:
                to_attach[key] = desired[key]
                reattach_keys.add(key)

        if default_key in current:
            to_detach.pop(default_key, None)
            to_attach.pop(default_key, None)

        if reattach_keys:
            logger.debug(
                f"Reattaching {sorted(reattach_keys)} so that '{default_key}' is attached first"
            )

    if trunk:
        parents = [key for key, iface in to_detach.items() if iface.is_parent]
        if parents:
            raise ConfigurationError(
                f"cannot detach trunk interface {to_detach[parents[0]].describe()}: "
                "the parent interface of a running bare-metal instance is immutable"
            )

    return ReconcilePlan(
        detach=sorted(to_detach.items(), key=lambda item: detach_sort_key(item[1])),
        attach=sorted(to_attach.items(), key=lambda item: attach_sort_key(item[1])),
        default_key=default_key,
        reattach_keys=reattach_keys,
    )
