"""Engine configuration."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class ResourceClass(str, Enum):
    """Resource classes whose interfaces the engine reconciles."""
    INSTANCE = "instance"
    BAREMETAL = "baremetal"
    RESERVED_FIXED_IP = "reserved_fixed_ip"


# Backend error texts that no amount of retrying can fix
DEFAULT_PERMANENT_ERROR_MARKERS = [
    "Port Security must be enabled in order to have allowed address pairs on a port",
]


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Cloud API connection
    api_url: str = "https://api.edgecenter.ru/cloud"
    api_token: str = ""
    project_id: int = 0
    region_id: int = 0

    # Communication timeouts (seconds)
    http_timeout: float = 30.0

    # Task polling
    task_poll_interval: float = 3.0

    # Per-resource-class task wait bounds (seconds)
    instance_interface_timeout: float = 1200.0  # 20 minutes
    baremetal_interface_timeout: float = 1800.0  # 30 minutes
    reserved_fixed_ip_timeout: float = 1200.0

    # Retry policy for converging operations
    retry_attempts: int = 4
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 30.0
    permanent_error_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PERMANENT_ERROR_MARKERS)
    )

    # Concurrency limits (independent instances only)
    max_concurrent_reconciles: int = 4

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "NETATTACH_"


settings = Settings()


class ExecutorConfig(BaseModel):
    """Explicit knobs handed to the attachment executor.

    Built from ``settings`` by default, but tests and callers can construct
    one directly to tighten timeouts or disable polling delays.
    """
    timeouts: dict[ResourceClass, float] = Field(default_factory=lambda: {
        ResourceClass.INSTANCE: 1200.0,
        ResourceClass.BAREMETAL: 1800.0,
        ResourceClass.RESERVED_FIXED_IP: 1200.0,
    })
    poll_interval: float = 3.0
    retry_attempts: int = 4
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 30.0

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "ExecutorConfig":
        source = source or settings
        return cls(
            timeouts={
                ResourceClass.INSTANCE: source.instance_interface_timeout,
                ResourceClass.BAREMETAL: source.baremetal_interface_timeout,
                ResourceClass.RESERVED_FIXED_IP: source.reserved_fixed_ip_timeout,
            },
            poll_interval=source.task_poll_interval,
            retry_attempts=source.retry_attempts,
            retry_backoff_base=source.retry_backoff_base,
            retry_backoff_max=source.retry_backoff_max,
        )

    def timeout_for(self, resource_class: ResourceClass) -> float:
        return self.timeouts.get(resource_class, self.timeouts[ResourceClass.INSTANCE])
