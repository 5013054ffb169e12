import socket

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from promosync.core.config import settings
from promosync.core.exceptions import SourceAPIError, TransientSinkError
from promosync.core.retry import RetryPolicy, is_transient


class DummyOrig(Exception):
    def __init__(self, code: int, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.args = (code, message)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://pos.example/reporting/inventory")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


@pytest.mark.anyio
async def test_two_transient_failures_then_success():
    sleep = RecordingSleep()
    policy = RetryPolicy(base_delay=1.0, jitter=0.0, sleep=sleep)
    calls = {"count": 0}

    async def flaky():
        calls["count"] += 1
        if calls["count"] <= 2:
            raise httpx.ConnectError("connection refused")
        return "ok"

    assert await policy.execute(flaky) == "ok"
    assert calls["count"] == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.anyio
async def test_persistent_transient_failure_gives_up_after_four_attempts():
    policy = RetryPolicy(base_delay=0.0, jitter=0.0, sleep=RecordingSleep())
    calls = {"count": 0}

    async def always_503():
        calls["count"] += 1
        raise _status_error(503)

    with pytest.raises(httpx.HTTPStatusError):
        await policy.execute(always_503)
    assert calls["count"] == 4


@pytest.mark.anyio
async def test_non_transient_failure_is_not_retried():
    sleep = RecordingSleep()
    policy = RetryPolicy(sleep=sleep)
    calls = {"count": 0}

    async def unauthorized():
        calls["count"] += 1
        raise SourceAPIError(401, "https://pos.example/products", "bad key")

    with pytest.raises(SourceAPIError):
        await policy.execute(unauthorized)
    assert calls["count"] == 1
    assert sleep.delays == []


def test_delay_grows_exponentially_with_bounded_jitter():
    policy = RetryPolicy(base_delay=0.5, jitter=1.0)
    for attempt in range(3):
        delay = policy.delay_for(attempt)
        assert 0.5 * 2**attempt <= delay <= 0.5 * 2**attempt + 1.0


def test_policy_reads_settings(monkeypatch):
    monkeypatch.setattr(settings, "RETRY_ATTEMPTS", 5)
    monkeypatch.setattr(settings, "RETRY_BASE_DELAY", 0.25)
    monkeypatch.setattr(settings, "RETRY_JITTER", 0.0)

    policy = RetryPolicy.from_settings(settings)

    assert (policy.max_retries, policy.base_delay, policy.jitter) == (5, 0.25, 0.0)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_status_error(502), True),
        (_status_error(404), False),
        (httpx.ReadTimeout("slow"), True),
        (socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution"), True),
        (socket.gaierror(socket.EAI_NONAME, "Name or service not known"), False),
        (ConnectionResetError(), True),
        (TransientSinkError("cms 503", 503), True),
        (OperationalError("stmt", {}, DummyOrig(1213, "Deadlock found")), True),
        (OperationalError("stmt", {}, DummyOrig(1045, "Access denied")), False),
        (ValueError("bad json"), False),
    ],
)
def test_transient_classification(exc, expected):
    assert is_transient(exc) is expected
