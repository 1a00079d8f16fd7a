from __future__ import annotations

import itertools
from unittest.mock import AsyncMock, patch

import pytest

from netattach.config import ExecutorConfig, ResourceClass, settings
from netattach.executor import AttachmentExecutor, build_attach_request
from netattach.schemas import (
    AllowedAddressPair,
    AttachedInterface,
    AttachRequest,
    DetachRequest,
    InterfaceDescriptor,
    InterfaceType,
    IPAssignment,
    NetworkDetails,
    TaskState,
    TaskStatus,
)

EXTERNAL_NETWORK = "ext-net"


def subnet_iface(subnet: str, *, default: bool = False, parent: bool = False, **kwargs) -> InterfaceDescriptor:
    """Desired ``subnet`` interface on network ``net-<subnet>``."""
    return InterfaceDescriptor(
        type=InterfaceType.SUBNET,
        subnet_id=subnet,
        network_id=f"net-{subnet}",
        is_default=default,
        is_parent=parent,
        **kwargs,
    )


class FakeCloud:
    """In-memory compute, port and reserved-fixed-IP backend.

    Interfaces attach in call order. Every mutating call is recorded in
    ``calls``; ``failures`` maps a method name to exceptions raised by its
    next invocations.
    """

    def __init__(self, baremetal: bool = False):
        self.baremetal = baremetal
        self.instances: dict[str, list[AttachedInterface]] = {}
        self.tasks: dict[str, TaskStatus] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, list[Exception]] = {}
        self.pending_polls: dict[str, int] = {}
        self._ports = itertools.count(1)
        self._tasks = itertools.count(1)
        self._ips = itertools.count(10)

    # --- helpers ---

    def _maybe_fail(self, method: str) -> None:
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    def _new_task(self, created: dict[str, list[str]] | None = None) -> str:
        task_id = f"task-{next(self._tasks)}"
        self.tasks[task_id] = TaskStatus(
            id=task_id, state=TaskState.SUCCESS, created_resources=created or {}
        )
        return task_id

    def _make_port(self, request: AttachRequest) -> AttachedInterface:
        ip = f"10.0.0.{next(self._ips)}"
        port_id = f"port-{next(self._ports)}"
        sgs = [sg.id for sg in request.security_groups]
        if request.type == InterfaceType.SUBNET:
            return AttachedInterface(
                port_id=port_id,
                network_id=f"net-{request.subnet_id}",
                ip_assignments=[IPAssignment(subnet_id=request.subnet_id, ip_address=ip)],
                security_groups=sgs,
            )
        if request.type == InterfaceType.ANY_SUBNET:
            return AttachedInterface(
                port_id=port_id,
                network_id=request.network_id,
                ip_assignments=[IPAssignment(subnet_id=f"{request.network_id}-auto", ip_address=ip)],
                security_groups=sgs,
            )
        if request.type == InterfaceType.RESERVED_FIXED_IP:
            return AttachedInterface(
                port_id=request.port_id,
                network_id="net-rfip",
                name=f"reserved_fixed_ip_{request.port_id}",
                ip_assignments=[IPAssignment(subnet_id=f"rfip-{request.port_id}", ip_address=ip)],
                security_groups=sgs,
            )
        return AttachedInterface(
            port_id=port_id,
            network_id=EXTERNAL_NETWORK,
            network_details=NetworkDetails(external=True, name="public"),
            ip_assignments=[IPAssignment(subnet_id="ext-subnet", ip_address=ip)],
            security_groups=sgs,
        )

    def _ports_of(self, instance_id: str) -> list[AttachedInterface]:
        listing = self.instances.get(instance_id, [])
        if self.baremetal and listing:
            return [listing[0], *listing[0].sub_ports]
        return listing

    def _find_port(self, port_id: str) -> AttachedInterface | None:
        for instance_id in self.instances:
            for port in self._ports_of(instance_id):
                if port.port_id == port_id:
                    return port
        return None

    def _plug(self, instance_id: str, port: AttachedInterface) -> None:
        listing = self.instances.setdefault(instance_id, [])
        if self.baremetal and listing:
            listing[0].sub_ports.append(port)
        else:
            listing.append(port)

    def seed(self, instance_id: str, descriptors: list[InterfaceDescriptor]) -> list[str]:
        """Attach interfaces without recording calls; returns their port IDs."""
        port_ids = []
        for descriptor in descriptors:
            port = self._make_port(build_attach_request(descriptor))
            self._plug(instance_id, port)
            port_ids.append(port.port_id)
        return port_ids

    def keys(self, instance_id: str) -> list[str]:
        """Identity-like key of every attached port, in attachment order."""
        keys = []
        for port in self._ports_of(instance_id):
            if port.network_details.external:
                keys.append("external")
            elif port.is_reserved_fixed_ip:
                keys.append(port.port_id)
            else:
                keys.append(port.ip_assignments[0].subnet_id)
        return keys

    def mutating_calls(self) -> list[tuple]:
        return [call for call in self.calls if call[0] not in ("list", "get_task")]

    # --- ComputeAPI ---

    async def list_interfaces(self, instance_id: str) -> list[AttachedInterface]:
        self.calls.append(("list", instance_id))
        self._maybe_fail("list_interfaces")
        return [port.model_copy(deep=True) for port in self.instances.get(instance_id, [])]

    async def attach_interface(self, instance_id: str, request: AttachRequest) -> str:
        key = request.subnet_id or request.port_id or request.network_id or "external"
        self.calls.append(("attach", instance_id, key))
        self._maybe_fail("attach_interface")
        port = self._make_port(request)
        self._plug(instance_id, port)
        if request.type == InterfaceType.RESERVED_FIXED_IP:
            return self._new_task({"reserved_fixed_ips": [port.port_id]})
        return self._new_task({"ports": [port.port_id]})

    async def detach_interface(self, instance_id: str, request: DetachRequest) -> str:
        self.calls.append(("detach", instance_id, request.port_id))
        self._maybe_fail("detach_interface")
        listing = self.instances.get(instance_id, [])
        if self.baremetal and listing:
            listing[0].sub_ports = [p for p in listing[0].sub_ports if p.port_id != request.port_id]
        else:
            self.instances[instance_id] = [p for p in listing if p.port_id != request.port_id]
        return self._new_task()

    async def get_task(self, task_id: str) -> TaskStatus:
        self.calls.append(("get_task", task_id))
        remaining = self.pending_polls.get(task_id, 0)
        if remaining:
            self.pending_polls[task_id] = remaining - 1
            return TaskStatus(id=task_id, state=TaskState.PENDING)
        return self.tasks[task_id]

    async def assign_security_groups(self, instance_id: str, port_id: str, security_group_ids: list[str]) -> None:
        self.calls.append(("assign_sg", port_id, tuple(security_group_ids)))
        port = self._find_port(port_id)
        port.security_groups = sorted(set(port.security_groups) | set(security_group_ids))

    async def unassign_security_groups(self, instance_id: str, port_id: str, security_group_ids: list[str]) -> None:
        self.calls.append(("unassign_sg", port_id, tuple(security_group_ids)))
        port = self._find_port(port_id)
        port.security_groups = sorted(set(port.security_groups) - set(security_group_ids))

    # --- PortAPI ---

    async def enable_port_security(self, port_id: str) -> None:
        self.calls.append(("enable_port_security", port_id))
        self._find_port(port_id).port_security_enabled = True

    async def disable_port_security(self, port_id: str) -> None:
        self.calls.append(("disable_port_security", port_id))
        self._find_port(port_id).port_security_enabled = False

    async def assign_allowed_address_pairs(self, port_id: str, pairs: list[AllowedAddressPair]) -> None:
        self.calls.append(("allowed_address_pairs", port_id, tuple(p.ip_address for p in pairs)))
        self._maybe_fail("assign_allowed_address_pairs")

    # --- ReservedFixedIPAPI ---

    async def add_instance_ports(self, port_id: str, port_ids: list[str]) -> None:
        self.calls.append(("add_instance_ports", port_id, tuple(port_ids)))
        self._maybe_fail("add_instance_ports")

    async def replace_instance_ports(self, port_id: str, port_ids: list[str]) -> None:
        self.calls.append(("replace_instance_ports", port_id, tuple(port_ids)))
        self._maybe_fail("replace_instance_ports")

    async def switch_vip_status(self, port_id: str, is_vip: bool) -> None:
        self.calls.append(("switch_vip_status", port_id, is_vip))


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def bm_cloud() -> FakeCloud:
    return FakeCloud(baremetal=True)


@pytest.fixture
def fast_config() -> ExecutorConfig:
    """No polling delay and short task bounds."""
    return ExecutorConfig(
        timeouts={
            ResourceClass.INSTANCE: 2.0,
            ResourceClass.BAREMETAL: 2.0,
            ResourceClass.RESERVED_FIXED_IP: 2.0,
        },
        poll_interval=0,
    )


@pytest.fixture
def executor(cloud, fast_config) -> AttachmentExecutor:
    return AttachmentExecutor(cloud, cloud, fast_config, ResourceClass.INSTANCE)


@pytest.fixture
def bm_executor(bm_cloud, fast_config) -> AttachmentExecutor:
    return AttachmentExecutor(bm_cloud, bm_cloud, fast_config, ResourceClass.BAREMETAL)


@pytest.fixture
def no_sleep():
    """Record retry backoff delays instead of sleeping."""
    with patch("netattach.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch):
    """Keep tests independent of NETATTACH_* in the environment."""
    monkeypatch.setattr(settings, "retry_attempts", 4)
    monkeypatch.setattr(settings, "retry_backoff_base", 1.0)
    monkeypatch.setattr(settings, "retry_backoff_max", 30.0)
    yield


@pytest.fixture
def subnet():
    """Factory for desired ``subnet`` interfaces."""
    return subnet_iface
