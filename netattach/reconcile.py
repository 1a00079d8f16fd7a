"""Interface reconciliation entry points.

Data flow for one instance:
    desired (+ current listing) -> validate -> resolve identities
    -> set difference -> ordering correction -> detach/attach -> survivor sync

``reconcile_interfaces`` works on descriptor lists supplied by the caller;
``reconcile_instance`` reads the current state from the compute API first;
``reconcile_many`` runs several independent instances concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from netattach import metrics
from netattach.client import ComputeAPI, PortAPI
from netattach.config import ExecutorConfig, ResourceClass, settings
from netattach.executor import AttachmentExecutor
from netattach.identity import resolve_identities
from netattach.logging_config import instance_id_var
from netattach.ordering import ReconcilePlan, correct_order
from netattach.planner import plan_interface_changes
from netattach.readback import read_baremetal_interfaces, read_instance_interfaces
from netattach.schemas import InterfaceDescriptor, rank_orders
from netattach.validation import validate_interfaces

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one successful reconciliation."""
    instance_id: str
    interfaces: list[InterfaceDescriptor] = field(default_factory=list)
    plan: ReconcilePlan = field(default_factory=ReconcilePlan)

    @property
    def changed(self) -> bool:
        return not self.plan.is_empty


def _copies(descriptors: Iterable[InterfaceDescriptor]) -> list[InterfaceDescriptor]:
    return [d.model_copy(deep=True) for d in descriptors]


def plan_reconcile(
    current: list[InterfaceDescriptor],
    desired: list[InterfaceDescriptor],
    *,
    trunk: bool = False,
) -> tuple[dict[str, InterfaceDescriptor], dict[str, InterfaceDescriptor], ReconcilePlan]:
    """Validate, key and plan without touching the backend.

    Orders on both sides are normalized to 1..N first.

    Returns:
        (keyed current, keyed desired, plan)

    Raises:
        ConfigurationError: Invalid desired configuration, colliding
            identities, or a plan that would detach a bare-metal parent.
    """
    validate_interfaces(desired, baremetal=trunk)
    current_keyed = resolve_identities(rank_orders(_copies(current)))
    desired_keyed = resolve_identities(rank_orders(_copies(desired)))
    diff = plan_interface_changes(current_keyed, desired_keyed)
    plan = correct_order(current_keyed, desired_keyed, diff, trunk=trunk)
    return current_keyed, desired_keyed, plan


def _final_interfaces(
    current: dict[str, InterfaceDescriptor],
    desired: dict[str, InterfaceDescriptor],
    plan: ReconcilePlan,
    attached: list[InterfaceDescriptor],
) -> list[InterfaceDescriptor]:
    # Interfaces left in place keep their relative order and come first
    detached = set(plan.detach_keys)
    kept = sorted(
        (key for key in current if key not in detached and key in desired),
        key=lambda key: current[key].order or 0,
    )
    result = []
    for key in kept:
        have = current[key]
        result.append(desired[key].model_copy(
            update={"port_id": have.port_id, "ip_address": have.ip_address}, deep=True
        ))
    result.extend(attached)
    for position, descriptor in enumerate(result, start=1):
        descriptor.order = position
    return result


async def reconcile_interfaces(
    instance_id: str,
    current: list[InterfaceDescriptor],
    desired: list[InterfaceDescriptor],
    executor: AttachmentExecutor,
) -> ReconcileResult:
    """Bring an instance from ``current`` to ``desired`` interfaces.

    Args:
        instance_id: Compute or bare-metal instance ID
        current: Currently attached interfaces (with port IDs and addresses)
        desired: Desired interfaces from configuration
        executor: Executor bound to the instance's resource class

    Returns:
        ReconcileResult with the final interfaces in attachment order

    Raises:
        ConfigurationError: Before any backend call.
        InterfaceOperationError: A detach/attach/update failed; re-run
            against a fresh listing to resume.
    """
    start = time.monotonic()
    status = "success"
    token = instance_id_var.set(instance_id)
    try:
        current_keyed, desired_keyed, plan = plan_reconcile(current, desired, trunk=executor.trunk)

        if plan.is_empty:
            logger.debug(f"No interface attach/detach needed for {instance_id}")
        else:
            logger.info(
                f"Reconciling interfaces of {instance_id}: "
                f"detach={plan.detach_keys} attach={plan.attach_keys}"
            )

        detached = set(plan.detach_keys)
        kept_ports = {
            iface.port_id for key, iface in current_keyed.items()
            if key not in detached and iface.port_id
        }
        attached = await executor.apply(instance_id, plan, kept_ports)
        await executor.sync_surviving(
            instance_id, current_keyed, desired_keyed, skip=set(plan.attach_keys)
        )
        return ReconcileResult(
            instance_id=instance_id,
            interfaces=_final_interfaces(current_keyed, desired_keyed, plan, attached),
            plan=plan,
        )
    except Exception:
        status = "error"
        raise
    finally:
        instance_id_var.reset(token)
        metrics.reconcile_duration.labels(
            resource_class=executor.resource_class.value, status=status
        ).observe(time.monotonic() - start)


async def read_current_interfaces(
    compute: ComputeAPI,
    instance_id: str,
    resource_class: ResourceClass,
    desired: Iterable[InterfaceDescriptor] = (),
) -> list[InterfaceDescriptor]:
    """List an instance's interfaces and map them onto descriptors."""
    listing = await compute.list_interfaces(instance_id)
    if resource_class == ResourceClass.BAREMETAL:
        return read_baremetal_interfaces(listing, desired)
    return read_instance_interfaces(listing, desired)


async def reconcile_instance(
    instance_id: str,
    desired: list[InterfaceDescriptor],
    *,
    compute: ComputeAPI,
    ports: PortAPI,
    resource_class: ResourceClass = ResourceClass.INSTANCE,
    config: ExecutorConfig | None = None,
) -> ReconcileResult:
    """Reconcile against a fresh listing of the instance's interfaces."""
    executor = AttachmentExecutor(compute, ports, config, resource_class)
    current = await read_current_interfaces(compute, instance_id, resource_class, desired)
    return await reconcile_interfaces(instance_id, current, desired, executor)


async def reconcile_many(
    targets: dict[str, list[InterfaceDescriptor]],
    *,
    compute: ComputeAPI,
    ports: PortAPI,
    resource_class: ResourceClass = ResourceClass.INSTANCE,
    config: ExecutorConfig | None = None,
    max_concurrent: int | None = None,
) -> dict[str, ReconcileResult | Exception]:
    """Reconcile independent instances concurrently.

    Each instance is still reconciled sequentially. A failure of one instance
    does not stop the others; its exception is returned in its slot.

    Args:
        targets: instance ID -> desired interfaces
        max_concurrent: Upper bound on instances in flight (default from settings)

    Returns:
        instance ID -> ReconcileResult or the exception it failed with
    """
    limit = asyncio.Semaphore(max_concurrent or settings.max_concurrent_reconciles)
    config = config or ExecutorConfig.from_settings()

    async def _one(instance_id: str, desired: list[InterfaceDescriptor]) -> ReconcileResult:
        async with limit:
            return await reconcile_instance(
                instance_id,
                desired,
                compute=compute,
                ports=ports,
                resource_class=resource_class,
                config=config,
            )

    instance_ids = list(targets)
    outcomes = await asyncio.gather(
        *(_one(instance_id, targets[instance_id]) for instance_id in instance_ids),
        return_exceptions=True,
    )
    results: dict[str, ReconcileResult | Exception] = {}
    for instance_id, outcome in zip(instance_ids, outcomes):
        if isinstance(outcome, Exception):
            logger.error(f"Interface reconciliation of {instance_id} failed: {outcome}")
        elif isinstance(outcome, BaseException):
            raise outcome
        results[instance_id] = outcome
    return results
