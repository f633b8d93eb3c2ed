"""Typed failures of an HTTP exchange, and the result wrapper around them.

Failures are values, not exceptions. A request that fails is still a
request that finished, and its subscribers hear about it as an ``Outcome``.
"""

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict

from lockstep.protocol.response import Metadata

T = TypeVar("T")


class HttpErrorModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class BadUrl(HttpErrorModel):
    """The target could not be parsed or uses an unsupported scheme."""

    kind: Literal["bad_url"] = "bad_url"
    url: str


class Timeout(HttpErrorModel):
    """The exchange took longer than the request's timeout."""

    kind: Literal["timeout"] = "timeout"


class NetworkError(HttpErrorModel):
    """The transport failed before a response arrived."""

    kind: Literal["network_error"] = "network_error"


class BadStatus(HttpErrorModel):
    """The server answered with a non-2xx status."""

    kind: Literal["bad_status"] = "bad_status"
    metadata: Metadata
    body: bytes = b""

    @property
    def status_code(self) -> int:
        return self.metadata.status_code


class BadBody(HttpErrorModel):
    """A 2xx response whose body the request's interpreter rejected."""

    kind: Literal["bad_body"] = "bad_body"
    message: str
    metadata: Metadata
    body: bytes = b""


HttpError = BadUrl | Timeout | NetworkError | BadStatus | BadBody


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[T]):
    error: T

    @property
    def is_ok(self) -> bool:
        return False


Result = Ok[T] | Err[HttpError]
