"""Attachment executor: turns a reconcile plan into backend calls.

Key operations:
- wait_for_task: poll an asynchronous backend task, bounded per resource class
- detach / attach: one interface each, awaited to completion
- reconcile_port_security: flip port security only when it differs
- apply: all detaches (descending order), then all attaches (ascending order)
- sync_surviving: security-group and port-security drift on kept interfaces

Reconciliation of one instance is strictly sequential; every call is awaited
before the next one starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager

from netattach import metrics
from netattach.client import ComputeAPI, PortAPI
from netattach.config import ExecutorConfig, ResourceClass
from netattach.errors import (
    BackendError,
    ConfigurationError,
    InterfaceOperationError,
    InterfaceReadError,
    TaskFailedError,
    TaskTimeoutError,
)
from netattach.ordering import ReconcilePlan
from netattach.readback import find_attached
from netattach.schemas import (
    AttachedInterface,
    AttachRequest,
    DetachRequest,
    InterfaceDescriptor,
    InterfaceType,
    SecurityGroupRef,
    TaskState,
    TaskStatus,
)

logger = logging.getLogger(__name__)

# Failures of a single operation that are reported per descriptor
OPERATION_ERRORS = (BackendError, TaskFailedError, InterfaceReadError)


@contextmanager
def _timed(operation: str, count_errors: bool = True):
    start = time.monotonic()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        if count_errors:
            metrics.interface_operation_errors.labels(operation=operation).inc()
        raise
    finally:
        metrics.interface_operation_duration.labels(
            operation=operation, status=status
        ).observe(time.monotonic() - start)


def build_attach_request(descriptor: InterfaceDescriptor) -> AttachRequest:
    """Attach body: type discriminant plus the identifier that type needs."""
    request = AttachRequest(
        type=descriptor.type,
        security_groups=[SecurityGroupRef(id=sg) for sg in sorted(descriptor.security_groups)],
        floating_ip=descriptor.floating_ip,
    )
    if descriptor.type == InterfaceType.SUBNET:
        request.subnet_id = descriptor.subnet_id
    elif descriptor.type == InterfaceType.ANY_SUBNET:
        request.network_id = descriptor.network_id
    elif descriptor.type == InterfaceType.RESERVED_FIXED_IP:
        request.port_id = descriptor.port_id
    return request


def _assigned_ip(attached: AttachedInterface, descriptor: InterfaceDescriptor) -> str | None:
    for assignment in attached.ip_assignments:
        if descriptor.subnet_id and assignment.subnet_id == descriptor.subnet_id:
            return assignment.ip_address or None
    if attached.ip_assignments:
        return attached.ip_assignments[0].ip_address or None
    return None


class AttachmentExecutor:
    """Issues detach/attach calls for one resource class."""

    def __init__(
        self,
        compute: ComputeAPI,
        ports: PortAPI,
        config: ExecutorConfig | None = None,
        resource_class: ResourceClass = ResourceClass.INSTANCE,
    ):
        self.compute = compute
        self.ports = ports
        self.config = config or ExecutorConfig.from_settings()
        self.resource_class = resource_class

    @property
    def trunk(self) -> bool:
        return self.resource_class == ResourceClass.BAREMETAL

    async def wait_for_task(self, task_id: str) -> TaskStatus:
        """Poll a task until it leaves the pending state.

        Raises:
            TaskFailedError: The task finished in the error state.
            TaskTimeoutError: The task did not finish within the
                resource-class timeout.
        """
        timeout = self.config.timeout_for(self.resource_class)

        async def _poll() -> TaskStatus:
            while True:
                status = await self.compute.get_task(task_id)
                if status.state == TaskState.SUCCESS:
                    return status
                if status.state == TaskState.ERROR:
                    raise TaskFailedError(
                        f"task {task_id} failed: {status.error or 'unknown error'}",
                        task_id,
                        status.error,
                    )
                await asyncio.sleep(self.config.poll_interval)

        # Failures are counted by the enclosing attach/detach
        with _timed("task_wait", count_errors=False):
            try:
                return await asyncio.wait_for(_poll(), timeout=timeout)
            except asyncio.TimeoutError:
                raise TaskTimeoutError(
                    f"task {task_id} did not finish within {timeout:.0f}s", task_id, timeout
                ) from None

    async def detach(self, instance_id: str, descriptor: InterfaceDescriptor) -> None:
        """Detach one interface and wait for the backend task.

        Raises:
            ConfigurationError: For a bare-metal parent, before any backend call.
        """
        if self.trunk and descriptor.is_parent:
            raise ConfigurationError(f"could not detach trunk interface {descriptor.describe()}")
        if not descriptor.port_id:
            raise InterfaceReadError(f"interface {descriptor.describe()} has no port to detach")

        logger.info(f"Detaching interface {descriptor.describe()} from {instance_id}")
        with _timed("detach"):
            task_id = await self.compute.detach_interface(
                instance_id,
                DetachRequest(port_id=descriptor.port_id, ip_address=descriptor.ip_address),
            )
            await self.wait_for_task(task_id)

    async def attach(
        self,
        instance_id: str,
        descriptor: InterfaceDescriptor,
        claimed_ports: set[str] | None = None,
    ) -> InterfaceDescriptor:
        """Attach one interface and return a copy carrying its port and address.

        Args:
            instance_id: Instance to attach to
            descriptor: Desired interface
            claimed_ports: Ports already held by other interfaces of the instance
        """
        logger.info(f"Attaching interface {descriptor.describe()} to {instance_id}")
        with _timed("attach"):
            task_id = await self.compute.attach_interface(
                instance_id, build_attach_request(descriptor)
            )
            status = await self.wait_for_task(task_id)

        result = descriptor.model_copy(deep=True)
        created = status.created_resources
        created_ports = created.get("ports") or created.get("reserved_fixed_ips") or []
        if created_ports:
            result.port_id = created_ports[0]

        listing = await self.compute.list_interfaces(instance_id)
        attached = find_attached(listing, result, claimed_ports=claimed_ports)
        if attached is not None:
            result.port_id = attached.port_id
            result.ip_address = _assigned_ip(attached, result)
            await self.reconcile_port_security(result, attached)
        else:
            logger.warning(f"Attached interface {result.describe()} not found in listing of {instance_id}")
        return result

    async def reconcile_port_security(
        self, descriptor: InterfaceDescriptor, attached: AttachedInterface
    ) -> bool:
        """Enable or disable port security if the port disagrees with the descriptor.

        Returns:
            True if a backend call was made
        """
        if (not attached.port_security_enabled) == descriptor.port_security_disabled:
            return False
        with _timed("port_security"):
            if descriptor.port_security_disabled:
                logger.info(f"Disabling port security on port {attached.port_id}")
                await self.ports.disable_port_security(attached.port_id)
            else:
                logger.info(f"Enabling port security on port {attached.port_id}")
                await self.ports.enable_port_security(attached.port_id)
        return True

    async def apply(
        self,
        instance_id: str,
        plan: ReconcilePlan,
        kept_ports: set[str] | None = None,
    ) -> list[InterfaceDescriptor]:
        """Execute a plan: every detach, then every attach, in plan order.

        Args:
            instance_id: Instance to reconcile
            plan: Ordered detach/attach sequence
            kept_ports: Ports of interfaces the plan leaves in place

        Returns:
            Attached descriptors in attachment order

        Raises:
            InterfaceOperationError: The first failing detach or attach.
                Work already done is not rolled back.
        """
        for _, descriptor in plan.detach:
            try:
                await self.detach(instance_id, descriptor)
            except OPERATION_ERRORS as e:
                raise InterfaceOperationError("detach", descriptor, e) from e

        listing: list[AttachedInterface] = []
        if self.trunk and plan.attach:
            listing = await self.compute.list_interfaces(instance_id)

        claimed = set(kept_ports or ())
        attached = []
        for _, descriptor in plan.attach:
            # Only an exact match counts; a shared network does not
            if self.trunk and find_attached(listing, descriptor, match_network=False) is not None:
                logger.info(f"Interface {descriptor.describe()} already attached to {instance_id}, skipping")
                attached.append(descriptor)
                continue
            try:
                result = await self.attach(instance_id, descriptor, claimed_ports=claimed)
            except OPERATION_ERRORS as e:
                raise InterfaceOperationError("attach", descriptor, e) from e
            attached.append(result)
            if result.port_id:
                claimed.add(result.port_id)
        return attached

    async def sync_surviving(
        self,
        instance_id: str,
        current: dict[str, InterfaceDescriptor],
        desired: dict[str, InterfaceDescriptor],
        skip: set[str] | None = None,
    ) -> None:
        """Reconcile security groups and port security of interfaces kept in place.

        An empty desired security-group set leaves the port's groups as they are.
        """
        skip = skip or set()
        for key, want in desired.items():
            have = current.get(key)
            if have is None or key in skip or not have.port_id:
                continue
            try:
                if have.port_security_disabled != want.port_security_disabled:
                    with _timed("port_security"):
                        if want.port_security_disabled:
                            await self.ports.disable_port_security(have.port_id)
                        else:
                            await self.ports.enable_port_security(have.port_id)

                if want.port_security_disabled or not want.security_groups:
                    continue
                to_remove = sorted(have.security_groups - want.security_groups)
                to_add = sorted(want.security_groups - have.security_groups)
                if not to_remove and not to_add:
                    continue
                with _timed("security_groups"):
                    if to_remove:
                        logger.info(f"Removing security groups {to_remove} from port {have.port_id}")
                        await self.compute.unassign_security_groups(instance_id, have.port_id, to_remove)
                    if to_add:
                        logger.info(f"Adding security groups {to_add} to port {have.port_id}")
                        await self.compute.assign_security_groups(instance_id, have.port_id, to_add)
            except OPERATION_ERRORS as e:
                raise InterfaceOperationError("update", have, e) from e
