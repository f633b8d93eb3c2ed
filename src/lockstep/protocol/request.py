"""Request descriptors.

A descriptor is an immutable value describing one HTTP exchange the
application wants. The runtime compares descriptors to decide whether a
tracked request is still the one that is running, so equality is strictly
structural and leaves out the response interpreter.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from lockstep.protocol.expect import Expect, expect_whatever

T = TypeVar("T")

Header = tuple[str, str]


@dataclass(frozen=True)
class EmptyBody:
    kind: Literal["empty"] = "empty"


@dataclass(frozen=True)
class StringBody:
    mime: str
    content: str
    kind: Literal["string"] = "string"


@dataclass(frozen=True)
class BytesBody:
    mime: str
    content: bytes
    kind: Literal["bytes"] = "bytes"


@dataclass(frozen=True)
class StringPart:
    name: str
    value: str


@dataclass(frozen=True)
class BytesPart:
    name: str
    mime: str
    content: bytes
    filename: str | None = None


Part = StringPart | BytesPart


@dataclass(frozen=True)
class MultipartBody:
    parts: tuple[Part, ...] = ()
    kind: Literal["multipart"] = "multipart"


Body = EmptyBody | StringBody | BytesBody | MultipartBody


def empty_body() -> EmptyBody:
    return EmptyBody()


def string_body(mime: str, content: str) -> StringBody:
    return StringBody(mime=mime, content=content)


def bytes_body(mime: str, content: bytes) -> BytesBody:
    return BytesBody(mime=mime, content=content)


def multipart_body(*parts: Part) -> MultipartBody:
    return MultipartBody(parts=tuple(parts))


@dataclass(frozen=True)
class RequestDescriptor(Generic[T]):
    """One desired HTTP exchange.

    ``tracker_id`` names the logical slot this request occupies. A
    descriptor without one is fire-and-forget and can only be sent, never
    reconciled.
    """

    method: str
    url: str
    headers: tuple[Header, ...] = ()
    body: Body = field(default_factory=EmptyBody)
    expect: Expect[T] = field(
        default_factory=expect_whatever, compare=False, hash=False, repr=False
    )
    timeout: float | None = None
    tracker_id: str | None = None
    allow_cross_origin_credentials: bool = False

    def __post_init__(self) -> None:
        # Accept lists for convenience but store tuples so the value stays
        # hashable and immutable.
        if not isinstance(self.headers, tuple):
            object.__setattr__(self, "headers", tuple(tuple(h) for h in self.headers))
        if self.timeout is not None and self.timeout < 0:
            raise ValueError("timeout must be non-negative")

    def fingerprint(self) -> tuple[Any, ...]:
        """Structural identity of the request, excluding the interpreter."""
        return (
            self.method,
            self.url,
            self.headers,
            self.body,
            self.timeout,
            self.allow_cross_origin_credentials,
        )

    def same_request(self, other: "RequestDescriptor[Any]") -> bool:
        return self.fingerprint() == other.fingerprint()


def request(
    method: str,
    url: str,
    *,
    headers: list[Header] | tuple[Header, ...] = (),
    body: Body | None = None,
    expect: Expect[T] | None = None,
    timeout: float | None = None,
    tracker: str | None = None,
    allow_cross_origin_credentials: bool = False,
) -> RequestDescriptor[T]:
    """Build a descriptor with keyword arguments and sensible defaults."""
    return RequestDescriptor(
        method=method.upper(),
        url=url,
        headers=tuple(headers),
        body=body if body is not None else EmptyBody(),
        expect=expect if expect is not None else expect_whatever(),
        timeout=timeout,
        tracker_id=tracker,
        allow_cross_origin_credentials=allow_cross_origin_credentials,
    )


def get(url: str, **kwargs: Any) -> RequestDescriptor[Any]:
    return request("GET", url, **kwargs)


def post(url: str, **kwargs: Any) -> RequestDescriptor[Any]:
    return request("POST", url, **kwargs)
