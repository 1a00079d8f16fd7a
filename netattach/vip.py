"""Reserved-fixed-IP VIP port sharing.

A VIP is a reserved fixed IP shared across several instance ports. It needs
port security enabled on those ports and cannot be combined with allowed
address pairs. The calls that connect instance ports race the interface
attachments they depend on, so each goes through ``with_retry``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from netattach.client import PortAPI, ReservedFixedIPAPI
from netattach.errors import ConfigurationError
from netattach.retry import with_retry
from netattach.schemas import AllowedAddressPair

logger = logging.getLogger(__name__)


def check_vip_config(
    is_vip: bool,
    instance_ports: Sequence[str] | None = None,
    allowed_address_pairs: Sequence[AllowedAddressPair] | None = None,
) -> None:
    """Reject VIP settings that can never be applied.

    Raises:
        ConfigurationError: Instance ports without ``is_vip``, or a VIP
            combined with allowed address pairs.
    """
    if instance_ports and not is_vip:
        raise ConfigurationError(
            "field is_vip must be set 'true' for using field 'instance_ports_that_share_vip'"
        )
    if is_vip and allowed_address_pairs:
        raise ConfigurationError("a VIP cannot be combined with allowed address pairs")


async def add_instance_ports(
    api: ReservedFixedIPAPI, port_id: str, port_ids: list[str], **retry_options
) -> None:
    """Connect more instance ports to a VIP."""
    await with_retry(
        api.add_instance_ports, port_id, port_ids,
        description="add_instance_ports", **retry_options,
    )


async def replace_instance_ports(
    api: ReservedFixedIPAPI, port_id: str, port_ids: list[str], **retry_options
) -> None:
    """Set the exact list of instance ports sharing a VIP."""
    await with_retry(
        api.replace_instance_ports, port_id, port_ids,
        description="replace_instance_ports", **retry_options,
    )


async def assign_allowed_address_pairs(
    api: PortAPI,
    port_id: str,
    pairs: list[AllowedAddressPair],
    *,
    is_vip: bool = False,
    **retry_options,
) -> None:
    """Set the allowed address pairs of a port that is not a VIP.

    Raises:
        ConfigurationError: Before any backend call, if ``is_vip`` is set.
    """
    check_vip_config(is_vip, None, pairs)
    await with_retry(
        api.assign_allowed_address_pairs, port_id, pairs,
        description="assign_allowed_address_pairs", **retry_options,
    )


async def share_vip(
    api: ReservedFixedIPAPI,
    port_id: str,
    instance_ports: list[str],
    *,
    is_vip: bool = True,
    switch_status: bool = False,
    replace: bool = True,
    allowed_address_pairs: list[AllowedAddressPair] | None = None,
    **retry_options,
) -> None:
    """Apply the VIP state of a reserved fixed IP.

    Args:
        api: Reserved-fixed-IP collaborator
        port_id: Port of the reserved fixed IP
        instance_ports: Instance ports that should share the VIP
        is_vip: Desired VIP flag
        switch_status: The VIP flag changed and must be pushed first
        replace: Replace the connected ports (update) instead of adding (create)
        allowed_address_pairs: Pairs configured on the same reserved fixed IP

    Raises:
        ConfigurationError: Before any backend call, per ``check_vip_config``.
        BackendError: The permanent error, or the last one after retries.
    """
    check_vip_config(is_vip, instance_ports, allowed_address_pairs)

    if switch_status:
        logger.info(f"Switching VIP status of {port_id} to {is_vip}")
        await api.switch_vip_status(port_id, is_vip)

    if not is_vip:
        return

    logger.info(f"Sharing VIP {port_id} with ports {instance_ports}")
    if replace:
        await replace_instance_ports(api, port_id, instance_ports, **retry_options)
    elif instance_ports:
        await add_instance_ports(api, port_id, instance_ports, **retry_options)
