"""Retry transient network and sink failures with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import errno
import random
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger
from sqlalchemy.exc import DBAPIError, OperationalError

from promosync.core.config import settings
from promosync.core.exceptions import TransientSinkError

T = TypeVar("T")

# PostgreSQL serialization/deadlock and MySQL deadlock/lock-wait
DB_RETRIABLE_SQLSTATES = {"40001", "40P01"}
DB_RETRIABLE_ERROR_CODES = {1205, 1213}
TRANSIENT_ERRNOS = {errno.ECONNRESET, errno.ECONNREFUSED, errno.ETIMEDOUT, errno.EPIPE}


def _is_retriable_db_error(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in DB_RETRIABLE_SQLSTATES:
        return True
    code = None
    if orig is not None and getattr(orig, "args", None):
        try:
            code = int(orig.args[0])
        except (TypeError, ValueError):
            code = None
    if code in DB_RETRIABLE_ERROR_CODES:
        return True
    message = str(orig or exc).lower()
    return "deadlock" in message or "connection reset" in message or "timeout" in message


def is_transient(exc: BaseException) -> bool:
    """Classify an exception as worth retrying."""

    if isinstance(exc, TransientSinkError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, socket.gaierror):
        # EAI_AGAIN: temporary failure in name resolution
        return exc.errno == socket.EAI_AGAIN
    if isinstance(exc, (ConnectionResetError, ConnectionRefusedError, TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS:
        return True
    if isinstance(exc, (OperationalError, DBAPIError)):
        return _is_retriable_db_error(exc)
    return False


@dataclass(slots=True)
class RetryPolicy:
    """Retry an async operation up to ``max_retries`` times after the first attempt.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n`` plus a
    uniform jitter in ``[0, jitter]`` so that locations retrying at the same
    moment spread out.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    jitter: float = 1.0
    classify: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, cfg=settings) -> "RetryPolicy":
        return cls(
            max_retries=cfg.RETRY_ATTEMPTS,
            base_delay=cfg.RETRY_BASE_DELAY,
            jitter=cfg.RETRY_JITTER,
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2**attempt) + random.uniform(0, self.jitter)

    async def execute(self, operation: Callable[[], Awaitable[T]], *, label: str = "operation") -> T:
        """Run ``operation``; re-raise the last error once retries are exhausted."""

        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self.classify(exc) or attempt >= self.max_retries:
                    raise
                sleep_for = self.delay_for(attempt)
                logger.bind(
                    label=label,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    sleep=round(sleep_for, 3),
                    error=f"{type(exc).__name__}: {exc}",
                ).warning("retry_transient_failure")
                await self.sleep(sleep_for)
                attempt += 1
