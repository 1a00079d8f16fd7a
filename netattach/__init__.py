"""Network-interface reconciliation and ordered attachment for cloud instances."""

from netattach.config import ExecutorConfig, ResourceClass, Settings, settings
from netattach.errors import (
    BackendError,
    ConfigurationError,
    InterfaceOperationError,
    InterfaceReadError,
    PermanentBackendError,
    ReconcileError,
    TaskFailedError,
    TaskTimeoutError,
    TransientBackendError,
)
from netattach.executor import AttachmentExecutor
from netattach.reconcile import (
    ReconcileResult,
    reconcile_instance,
    reconcile_interfaces,
    reconcile_many,
)
from netattach.schemas import InterfaceDescriptor, InterfaceType, decode_interface, decode_interfaces

__version__ = "0.1.0"

__all__ = [
    "AttachmentExecutor",
    "BackendError",
    "ConfigurationError",
    "ExecutorConfig",
    "InterfaceDescriptor",
    "InterfaceOperationError",
    "InterfaceReadError",
    "InterfaceType",
    "PermanentBackendError",
    "ReconcileError",
    "ReconcileResult",
    "ResourceClass",
    "Settings",
    "TaskFailedError",
    "TaskTimeoutError",
    "TransientBackendError",
    "decode_interface",
    "decode_interfaces",
    "reconcile_instance",
    "reconcile_interfaces",
    "reconcile_many",
    "settings",
]
