"""Error taxonomy for interface reconciliation.

Every failure the engine surfaces is a ``ReconcileError``. Backend errors
carry a ``retriable`` tag set by the client, so the retry wrapper never has to
inspect message text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netattach.schemas import InterfaceDescriptor


class ReconcileError(Exception):
    """Base exception for reconciliation failures."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ReconcileError):
    """Desired configuration can never be applied; detected before any backend call."""


class InterfaceReadError(ReconcileError):
    """Backend interface listing cannot be mapped onto descriptors."""


class BackendError(ReconcileError):
    """Base exception for backend API failures."""
    def __init__(self, message: str, status_code: int | None = None, retriable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class TransientBackendError(BackendError):
    """Backend state has not converged yet; retrying may succeed."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code, retriable=True)


class PermanentBackendError(BackendError):
    """Structural incompatibility reported by the backend; retrying cannot help."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code, retriable=False)


class TaskFailedError(ReconcileError):
    """Asynchronous backend task finished in the error state."""
    def __init__(self, message: str, task_id: str, detail: str | None = None):
        super().__init__(message)
        self.task_id = task_id
        self.detail = detail


class TaskTimeoutError(TaskFailedError):
    """Asynchronous backend task did not finish within its bound."""
    def __init__(self, message: str, task_id: str, timeout: float):
        super().__init__(message, task_id)
        self.timeout = timeout


class InterfaceOperationError(ReconcileError):
    """A single detach/attach failed; carries the descriptor and backend text."""
    def __init__(self, operation: str, descriptor: "InterfaceDescriptor", cause: Exception):
        detail = getattr(cause, "message", None) or str(cause)
        super().__init__(f"cannot {operation} interface {descriptor.describe()}: {detail}")
        self.operation = operation
        self.descriptor = descriptor
        self.cause = cause
