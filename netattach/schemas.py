"""Interface descriptor and backend payload schemas.

These Pydantic models are the only shapes the reconciliation engine works
with. Resource-layer mappings are turned into descriptors by
``decode_interface()`` at the boundary; backend JSON is parsed into
``AttachedInterface`` / ``TaskStatus`` by the client.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from netattach.errors import ConfigurationError


class InterfaceType(str, Enum):
    """How an interface is attached; decides which identifier is meaningful."""
    SUBNET = "subnet"
    ANY_SUBNET = "any_subnet"
    EXTERNAL = "external"
    RESERVED_FIXED_IP = "reserved_fixed_ip"


class FloatingIPSource(str, Enum):
    NEW = "new"
    EXISTING = "existing"


class TaskState(str, Enum):
    """Normalized backend task state."""
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


# --- Interface descriptor ---

class FloatingIP(BaseModel):
    source: FloatingIPSource
    existing_floating_id: str | None = None


class InterfaceDescriptor(BaseModel):
    """One desired or actual network attachment of an instance."""
    type: InterfaceType
    network_id: str | None = None
    subnet_id: str | None = None
    port_id: str | None = None
    ip_address: str | None = None  # Known only after attachment
    order: int | None = None  # 1-based attachment position
    is_default: bool = False  # Compute instance: attached first, owns default route
    is_parent: bool = False  # Bare metal: trunk interface, always first
    security_groups: set[str] = Field(default_factory=set)
    port_security_disabled: bool = False
    floating_ip: FloatingIP | None = None

    @property
    def is_primary(self) -> bool:
        """True for the interface that must be attached before all others."""
        return self.is_default or self.is_parent

    def describe(self) -> str:
        parts = [f"type={self.type.value}"]
        for field in ("subnet_id", "network_id", "port_id", "ip_address"):
            value = getattr(self, field)
            if value:
                parts.append(f"{field}={value}")
        return "(" + ", ".join(parts) + ")"


# --- Backend listing ---

class IPAssignment(BaseModel):
    subnet_id: str = ""
    ip_address: str = ""


class NetworkDetails(BaseModel):
    external: bool = False
    name: str = ""


class FloatingIPDetail(BaseModel):
    id: str
    floating_ip_address: str | None = None


class AttachedInterface(BaseModel):
    """One interface from the compute API interface listing."""
    port_id: str
    network_id: str = ""
    name: str = ""
    port_security_enabled: bool = True
    network_details: NetworkDetails = Field(default_factory=NetworkDetails)
    ip_assignments: list[IPAssignment] = Field(default_factory=list)
    sub_ports: list[AttachedInterface] = Field(default_factory=list)
    floatingip_details: list[FloatingIPDetail] = Field(default_factory=list)
    security_groups: list[str] = Field(default_factory=list)

    @field_validator("security_groups", mode="before")
    @classmethod
    def _security_group_ids(cls, value: Any) -> Any:
        # Listing returns [{"id": ..., "name": ...}]; keep only the IDs
        if isinstance(value, list):
            return [item.get("id", "") if isinstance(item, Mapping) else item for item in value]
        return value

    @property
    def is_reserved_fixed_ip(self) -> bool:
        return InterfaceType.RESERVED_FIXED_IP.value in self.name


class TaskStatus(BaseModel):
    """Snapshot of an asynchronous backend task."""
    id: str
    state: TaskState
    created_resources: dict[str, list[str]] = Field(default_factory=dict)
    error: str | None = None


# --- Requests ---

class SecurityGroupRef(BaseModel):
    id: str


class AttachRequest(BaseModel):
    """Compute API: attach one interface to an instance."""
    type: InterfaceType
    subnet_id: str | None = None
    network_id: str | None = None
    port_id: str | None = None
    security_groups: list[SecurityGroupRef] = Field(default_factory=list)
    floating_ip: FloatingIP | None = None


class DetachRequest(BaseModel):
    """Compute API: detach one interface identified by port and address."""
    port_id: str
    ip_address: str | None = None


class AllowedAddressPair(BaseModel):
    ip_address: str
    mac_address: str | None = None


# --- Boundary decode ---

_FIELD_ALIASES = {
    "reserved_fixed_ip_port_id": "port_id",
}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value == "":
        return None
    return value


def decode_interface(raw: Mapping[str, Any]) -> InterfaceDescriptor:
    """Decode one resource-layer interface mapping into a descriptor.

    Accepts the flat key layout used by the resource schema (``fip_source``,
    ``existing_fip_id``, empty strings for unset identifiers).

    Raises:
        ConfigurationError: If the mapping is not a valid interface.
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"interface must be a mapping, got {type(raw).__name__}")

    data = {key: _blank_to_none(value) for key, value in raw.items() if key not in _FIELD_ALIASES}
    for alias, target in _FIELD_ALIASES.items():
        # The alias only fills a field left empty under its plain name
        value = _blank_to_none(raw.get(alias))
        if value is not None and data.get(target) is None:
            data[target] = value

    fip_source = data.pop("fip_source", None)
    existing_fip_id = data.pop("existing_fip_id", None)
    if fip_source:
        data["floating_ip"] = {"source": fip_source, "existing_floating_id": existing_fip_id}

    if data.get("security_groups") is None:
        data.pop("security_groups", None)

    known = set(InterfaceDescriptor.model_fields)
    unknown = sorted(set(data) - known)
    for key in unknown:
        data.pop(key)

    try:
        return InterfaceDescriptor.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid interface {dict(raw)!r}: {e}") from e


def decode_interfaces(raw_list: Iterable[Mapping[str, Any] | None]) -> list[InterfaceDescriptor]:
    """Decode a list of interface mappings, skipping null entries."""
    return [decode_interface(raw) for raw in raw_list if raw is not None]


def rank_orders(descriptors: list[InterfaceDescriptor]) -> list[InterfaceDescriptor]:
    """Renumber ``order`` to a 1..N permutation.

    Ranking is stable: by the existing ``order`` where set, then by list
    position. Returns the descriptors sorted by their new order.
    """
    indexed = list(enumerate(descriptors))
    indexed.sort(key=lambda item: (item[1].order is None, item[1].order or 0, item[0]))
    ranked = []
    for position, (_, descriptor) in enumerate(indexed, start=1):
        descriptor.order = position
        ranked.append(descriptor)
    return ranked
