"""Cloud API client for interface reconciliation.

The engine talks to three collaborators, declared here as Protocols:
- ComputeAPI: interface listing, attach/detach, task status, security groups
- PortAPI: port-security toggles and allowed address pairs
- ReservedFixedIPAPI: VIP instance-port sharing

``CloudClient`` implements all three over one shared ``httpx.AsyncClient``.
Every failure is translated into a tagged ``BackendError`` so callers never
have to look at status codes or message text.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from netattach.config import Settings, settings
from netattach.errors import BackendError, PermanentBackendError, TransientBackendError
from netattach.schemas import (
    AllowedAddressPair,
    AttachedInterface,
    AttachRequest,
    DetachRequest,
    TaskState,
    TaskStatus,
)

logger = logging.getLogger(__name__)


# Backend task states -> normalized state
TASK_STATE_MAP = {
    "NEW": TaskState.PENDING,
    "RUNNING": TaskState.PENDING,
    "FINISHED": TaskState.SUCCESS,
    "ERROR": TaskState.ERROR,
}

# Status codes that no retry can fix
PERMANENT_STATUS_CODES = {401, 403}


class ComputeAPI(Protocol):
    async def list_interfaces(self, instance_id: str) -> list[AttachedInterface]: ...

    async def attach_interface(self, instance_id: str, request: AttachRequest) -> str: ...

    async def detach_interface(self, instance_id: str, request: DetachRequest) -> str: ...

    async def get_task(self, task_id: str) -> TaskStatus: ...

    async def assign_security_groups(
        self, instance_id: str, port_id: str, security_group_ids: list[str]
    ) -> None: ...

    async def unassign_security_groups(
        self, instance_id: str, port_id: str, security_group_ids: list[str]
    ) -> None: ...


class PortAPI(Protocol):
    async def enable_port_security(self, port_id: str) -> None: ...

    async def disable_port_security(self, port_id: str) -> None: ...

    async def assign_allowed_address_pairs(
        self, port_id: str, pairs: list[AllowedAddressPair]
    ) -> None: ...


class ReservedFixedIPAPI(Protocol):
    async def add_instance_ports(self, port_id: str, port_ids: list[str]) -> None: ...

    async def replace_instance_ports(self, port_id: str, port_ids: list[str]) -> None: ...

    async def switch_vip_status(self, port_id: str, is_vip: bool) -> None: ...


def classify_backend_error(
    message: str,
    status_code: int | None = None,
    permanent_markers: list[str] | None = None,
) -> BackendError:
    """Build the tagged error for a failed backend call.

    Permanent: the message contains a known structural marker, or the
    request was not authorized. Everything else is assumed to be backend
    state that has not converged yet.
    """
    markers = settings.permanent_error_markers if permanent_markers is None else permanent_markers
    lowered = message.lower()
    if any(marker.lower() in lowered for marker in markers):
        return PermanentBackendError(message, status_code)
    if status_code in PERMANENT_STATUS_CODES:
        return PermanentBackendError(message, status_code)
    return TransientBackendError(message, status_code)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)[:500]


class CloudClient:
    """httpx implementation of the compute, port and reserved-fixed-IP APIs."""

    def __init__(
        self,
        config: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.config.api_url,
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            timeout=httpx.Timeout(self.config.http_timeout),
        )
        self._headers = {"Authorization": f"APIKey {self.config.api_token}"} if self.config.api_token else {}

    @property
    def _scope(self) -> str:
        return f"{self.config.project_id}/{self.config.region_id}"

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (or None).

        Raises:
            BackendError: Tagged transient/permanent per ``classify_backend_error``.
        """
        try:
            response = await self._http.request(
                method, path, json=json_body, params=params, headers=self._headers
            )
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} transport failure: {e}")
            raise TransientBackendError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.debug(f"{method} {path} returned {response.status_code}: {message}")
            raise classify_backend_error(
                message, response.status_code, self.config.permanent_error_markers
            )

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _first_task(body: Any, what: str) -> str:
        tasks = body.get("tasks") if isinstance(body, dict) else None
        if not tasks:
            raise TransientBackendError(f"{what} returned no task")
        return tasks[0]

    # --- ComputeAPI ---

    async def list_interfaces(self, instance_id: str) -> list[AttachedInterface]:
        body = await self._request("GET", f"/v1/instances/{self._scope}/{instance_id}/interfaces")
        results = body.get("results", []) if isinstance(body, dict) else body or []
        return [AttachedInterface.model_validate(item) for item in results]

    async def attach_interface(self, instance_id: str, request: AttachRequest) -> str:
        body = await self._request(
            "POST",
            f"/v1/instances/{self._scope}/{instance_id}/attach_interface",
            json_body=request.model_dump(mode="json", exclude_none=True),
        )
        return self._first_task(body, "attach_interface")

    async def detach_interface(self, instance_id: str, request: DetachRequest) -> str:
        body = await self._request(
            "POST",
            f"/v1/instances/{self._scope}/{instance_id}/detach_interface",
            json_body=request.model_dump(mode="json", exclude_none=True),
        )
        return self._first_task(body, "detach_interface")

    async def get_task(self, task_id: str) -> TaskStatus:
        body = await self._request("GET", f"/v1/tasks/{task_id}")
        raw_state = str(body.get("state", "")).upper()
        created = body.get("created_resources") or {}
        return TaskStatus(
            id=body.get("id", task_id),
            state=TASK_STATE_MAP.get(raw_state, TaskState.PENDING),
            created_resources={
                key: list(value) for key, value in created.items() if isinstance(value, list)
            },
            error=body.get("error"),
        )

    async def _security_group_names(self, security_group_ids: list[str]) -> list[str]:
        # Assign/unassign take security group names; the listing maps IDs to names
        body = await self._request("GET", f"/v1/securitygroups/{self._scope}")
        results = body.get("results", []) if isinstance(body, dict) else []
        names = {item.get("id"): item.get("name") for item in results}
        missing = [sg for sg in security_group_ids if sg not in names]
        if missing:
            raise TransientBackendError(f"security groups not found: {', '.join(missing)}")
        return [names[sg] for sg in security_group_ids]

    async def _change_security_groups(
        self, action: str, instance_id: str, port_id: str, security_group_ids: list[str]
    ) -> None:
        if not security_group_ids:
            return
        names = await self._security_group_names(security_group_ids)
        await self._request(
            "POST",
            f"/v1/instances/{self._scope}/{instance_id}/{action}",
            json_body={
                "ports_security_group_names": [
                    {"port_id": port_id, "security_group_names": names},
                ],
            },
        )

    async def assign_security_groups(
        self, instance_id: str, port_id: str, security_group_ids: list[str]
    ) -> None:
        await self._change_security_groups(
            "addsecuritygroup", instance_id, port_id, security_group_ids
        )

    async def unassign_security_groups(
        self, instance_id: str, port_id: str, security_group_ids: list[str]
    ) -> None:
        await self._change_security_groups(
            "delsecuritygroup", instance_id, port_id, security_group_ids
        )

    # --- PortAPI ---

    async def enable_port_security(self, port_id: str) -> None:
        await self._request("PATCH", f"/v1/ports/{self._scope}/{port_id}/enable_port_security")

    async def disable_port_security(self, port_id: str) -> None:
        await self._request("PATCH", f"/v1/ports/{self._scope}/{port_id}/disable_port_security")

    async def assign_allowed_address_pairs(
        self, port_id: str, pairs: list[AllowedAddressPair]
    ) -> None:
        await self._request(
            "PUT",
            f"/v1/ports/{self._scope}/{port_id}/allow_address_pairs",
            json_body={
                "allowed_address_pairs": [
                    pair.model_dump(mode="json", exclude_none=True) for pair in pairs
                ],
            },
        )

    # --- ReservedFixedIPAPI ---

    async def add_instance_ports(self, port_id: str, port_ids: list[str]) -> None:
        await self._request(
            "PATCH",
            f"/v1/reserved_fixed_ips/{self._scope}/{port_id}/connected_devices",
            json_body={"port_ids": port_ids},
        )

    async def replace_instance_ports(self, port_id: str, port_ids: list[str]) -> None:
        await self._request(
            "PUT",
            f"/v1/reserved_fixed_ips/{self._scope}/{port_id}/connected_devices",
            json_body={"port_ids": port_ids},
        )

    async def switch_vip_status(self, port_id: str, is_vip: bool) -> None:
        await self._request(
            "PATCH",
            f"/v1/reserved_fixed_ips/{self._scope}/{port_id}",
            json_body={"is_vip": is_vip},
        )


_cloud_client: CloudClient | None = None


def get_cloud_client() -> CloudClient:
    """Get the shared cloud client, creating it on first use."""
    global _cloud_client
    if _cloud_client is None:
        _cloud_client = CloudClient()
    return _cloud_client


async def close_cloud_client() -> None:
    """Close the shared cloud client.

    Should be called during application shutdown.
    """
    global _cloud_client
    if _cloud_client is not None:
        await _cloud_client.close()
        _cloud_client = None
