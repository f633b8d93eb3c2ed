"""Response interpreters.

An ``Expect`` turns a transport's raw response into a typed ``Result``.
It is attached to a request descriptor but takes no part in descriptor
equality: two requests that differ only in how they read the answer are
the same request on the wire.
"""

from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from lockstep.protocol.errors import (
    BadBody,
    BadStatus,
    BadUrl,
    Err,
    NetworkError,
    Ok,
    Result,
    Timeout,
)
from lockstep.protocol.response import (
    BadStatusResponse,
    BadUrlResponse,
    GoodStatusResponse,
    Metadata,
    NetworkErrorResponse,
    RawResponse,
    TimeoutResponse,
)

T = TypeVar("T")
U = TypeVar("U")

# Reads a 2xx body. Returns Ok(value) or Err(message) for a decode failure.
BodyReader = Callable[[Metadata, bytes], Ok[T] | Err[str]]


class Expect(Generic[T]):
    """Interpret a raw response into ``Ok(value)`` or ``Err(HttpError)``."""

    def __init__(self, interpret: Callable[[RawResponse], Result[T]]):
        self._interpret = interpret

    def __call__(self, response: RawResponse) -> Result[T]:
        return self._interpret(response)

    def map(self, func: Callable[[T], U]) -> "Expect[U]":
        """Transform the success value, leaving failures untouched."""

        def interpret(response: RawResponse) -> Result[U]:
            result = self._interpret(response)
            if isinstance(result, Ok):
                return Ok(func(result.value))
            return result

        return Expect(interpret)


def expect_body(read: BodyReader[T]) -> Expect[T]:
    """Build an interpreter from a reader for successful bodies.

    Transport failures and non-2xx statuses become the matching
    ``HttpError``; a reader failure becomes ``BadBody``.
    """

    def interpret(response: RawResponse) -> Result[T]:
        match response:
            case BadUrlResponse(url=url):
                return Err(BadUrl(url=url))
            case TimeoutResponse():
                return Err(Timeout())
            case NetworkErrorResponse():
                return Err(NetworkError())
            case BadStatusResponse(metadata=metadata, body=body):
                return Err(BadStatus(metadata=metadata, body=body))
            case GoodStatusResponse(metadata=metadata, body=body):
                read_result = read(metadata, body)
                if isinstance(read_result, Ok):
                    return read_result
                return Err(
                    BadBody(message=read_result.error, metadata=metadata, body=body)
                )
        raise TypeError(f"Unknown response type: {type(response).__name__}")

    return Expect(interpret)


def charset_of(metadata: Metadata, default: str = "utf-8") -> str:
    """Pull the charset parameter out of the Content-Type header."""
    content_type = metadata.headers.get("content-type", "")
    for param in content_type.split(";")[1:]:
        name, _, value = param.strip().partition("=")
        if name.lower() == "charset" and value:
            return value.strip('"')
    return default


def _read_text(metadata: Metadata, body: bytes) -> Ok[str] | Err[str]:
    charset = charset_of(metadata)
    try:
        return Ok(body.decode(charset))
    except LookupError:
        return Err(f"Unknown charset '{charset}'")
    except UnicodeDecodeError as e:
        return Err(f"Body is not valid {charset}: {e}")


def expect_string() -> Expect[str]:
    return expect_body(_read_text)


def expect_bytes() -> Expect[bytes]:
    return expect_body(lambda metadata, body: Ok(body))


def expect_whatever() -> Expect[None]:
    """Succeed on any 2xx, ignoring the body."""
    return expect_body(lambda metadata, body: Ok(None))


def expect_json(type_: Any) -> Expect[Any]:
    """Validate a JSON body against a type using pydantic.

    ``type_`` may be a model class or any type pydantic can adapt, such as
    ``list[int]`` or ``dict[str, Any]``.
    """
    adapter = TypeAdapter(type_)

    def read(metadata: Metadata, body: bytes) -> Ok[Any] | Err[str]:
        try:
            return Ok(adapter.validate_json(body))
        except ValidationError as e:
            return Err(str(e))

    return expect_body(read)
