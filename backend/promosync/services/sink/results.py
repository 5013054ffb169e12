"""Tagged outcomes of a single sink lookup.

REST lookups never raise for expected conditions; the caller inspects the
variant instead. ``unwrap`` turns the failure variants into exceptions for
code paths where a failure should abort the current batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from promosync.core.exceptions import SinkError, TransientSinkError


@dataclass(frozen=True, slots=True)
class Found:
    record: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NotFound:
    pass


@dataclass(frozen=True, slots=True)
class TransientError:
    message: str
    status_code: Optional[int] = None


@dataclass(frozen=True, slots=True)
class FatalError:
    message: str
    status_code: Optional[int] = None


LookupResult = Union[Found, NotFound, TransientError, FatalError]


def unwrap(result: LookupResult) -> Optional[dict[str, Any]]:
    """Record for ``Found``, None for ``NotFound``; raise for the error variants."""

    if isinstance(result, Found):
        return result.record
    if isinstance(result, NotFound):
        return None
    if isinstance(result, TransientError):
        raise TransientSinkError(result.message, result.status_code)
    raise SinkError(result.message, result.status_code)
