"""Tagged result values returned by every remote operation.

Remote calls never raise to their caller. They return either a ``Success``
carrying the parsed value or a ``Failure`` carrying a human-readable cause
and whether the upstream signalled rate limiting.

Usage:
    result = await client.get_epoch_info()
    if result.ok:
        print(result.value.epoch)
    else:
        print(result.cause)
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful remote call."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Failed remote call.

    Attributes:
        cause: Human-readable description of what went wrong
        rate_limited: True if the upstream answered "too many requests"
        status_code: HTTP status code, when one was received
    """

    cause: str
    rate_limited: bool = False
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return False


RpcResult = Union[Success[T], Failure]
