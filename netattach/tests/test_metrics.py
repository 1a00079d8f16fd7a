import pytest

from netattach import metrics
from netattach.errors import TransientBackendError
from netattach.retry import with_retry


def test_get_metrics_exposition() -> None:
    body, content_type = metrics.get_metrics()

    assert content_type.startswith("text/plain")
    assert b"netattach_interface_operation_seconds" in body
    assert b"netattach_reconcile_seconds" in body


@pytest.mark.asyncio
async def test_retry_counter_incremented(no_sleep) -> None:
    counter = metrics.retry_attempts.labels(operation="flaky_metric_probe")
    before = counter._value.get()
    failures = [TransientBackendError("not yet")]

    async def flaky():
        if failures:
            raise failures.pop()
        return "ok"

    assert await with_retry(flaky, description="flaky_metric_probe") == "ok"
    assert counter._value.get() == before + 1
