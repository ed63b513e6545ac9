import pytest

from services.uploader.application.retry import MAX_BACKOFF_SECONDS, RetryPolicy
from services.uploader.domain.errors import TransportError, UnexpectedStatus


class FlakyOperation:
    def __init__(self, failures: list[Exception], result="ok") -> None:
        self._failures = list(failures)
        self._result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._result


@pytest.mark.asyncio
async def test_transport_errors_are_retried_until_success():
    operation = FlakyOperation([TransportError("reset"), TransportError("reset")])
    policy = RetryPolicy(max_retries=2, backoff_seconds=0)

    result = await policy.run(operation, label="op")

    assert result == "ok"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries_extra_attempts():
    operation = FlakyOperation([TransportError("down")] * 5)
    policy = RetryPolicy(max_retries=2, backoff_seconds=0)

    with pytest.raises(TransportError):
        await policy.run(operation, label="op")

    assert operation.calls == 3


@pytest.mark.asyncio
async def test_status_errors_are_not_retried():
    operation = FlakyOperation([UnexpectedStatus("bad", status_code=500)])
    policy = RetryPolicy(max_retries=3, backoff_seconds=0)

    with pytest.raises(UnexpectedStatus):
        await policy.run(operation, label="op")

    assert operation.calls == 1


def test_backoff_doubles_and_is_capped():
    policy = RetryPolicy(max_retries=10, backoff_seconds=0.5)

    assert policy.attempts == 11
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
    assert policy.delay_for(10) == MAX_BACKOFF_SECONDS
