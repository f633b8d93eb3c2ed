"""httpx-backed transport with upload and download progress."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from lockstep.config import EngineSettings
from lockstep.errors import TransportClosedError
from lockstep.protocol.events import Receiving, Sending
from lockstep.protocol.request import (
    BytesBody,
    BytesPart,
    MultipartBody,
    RequestDescriptor,
    StringBody,
)
from lockstep.protocol.response import (
    BadUrlResponse,
    Metadata,
    NetworkErrorResponse,
    RawResponse,
    TimeoutResponse,
    merge_headers,
    status_response,
)
from lockstep.transport.base import ProgressReporter, Transport

logger = logging.getLogger(__name__)


class HttpxTransport(Transport):
    """Performs exchanges with an ``httpx.AsyncClient``.

    The request body is streamed in ``chunk_size`` pieces so every piece
    handed to the connection produces a ``Sending`` event. The response is
    streamed too, producing one ``Receiving`` event per chunk read.

    A request timeout covers the whole exchange, redirects and body
    included.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            client: Client to send through. When omitted the transport owns
                a client that follows redirects, and closes it on close().
            settings: Chunk size and default timeout.
        """
        self._settings = settings or EngineSettings()
        self._owns_client = client is None
        self._http_client = client or httpx.AsyncClient(follow_redirects=True)
        self._closed = False

    async def exchange(
        self, request: RequestDescriptor[Any], report: ProgressReporter
    ) -> RawResponse:
        if self._closed:
            raise TransportClosedError("Cannot send request: transport is closed")

        try:
            http_request = self._build_request(request, report)
        except httpx.InvalidURL:
            return BadUrlResponse(url=request.url)

        try:
            async with asyncio.timeout(self._timeout_for(request)):
                response = await self._send(http_request, request)
                try:
                    body = await self._read_body(response, report)
                finally:
                    await response.aclose()
        except (httpx.TimeoutException, TimeoutError):
            return TimeoutResponse()
        except (httpx.InvalidURL, httpx.UnsupportedProtocol):
            return BadUrlResponse(url=request.url)
        except (httpx.TransportError, httpx.TooManyRedirects) as e:
            logger.debug(f"{request.method} {request.url} failed: {e!r}")
            return NetworkErrorResponse()

        metadata = Metadata(
            url=str(response.url),
            status_code=response.status_code,
            status_text=response.reason_phrase,
            headers=merge_headers(response.headers.multi_items()),
        )
        return status_response(metadata, body)

    async def close(self) -> None:
        """Close the owned HTTP client. Safe to call multiple times."""
        self._closed = True
        if self._owns_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            logger.debug("HTTP client closed")

    # ================================
    # Redirects and credentials
    # ================================

    async def _send(
        self, http_request: httpx.Request, request: RequestDescriptor[Any]
    ) -> httpx.Response:
        """Send, following redirects one hop at a time.

        httpx re-attaches the client's cookie jar to every redirect it
        builds, so the credential rule is applied again on each hop.
        Redirects are only followed when the client is set to follow them.
        """
        follow = self._http_client.follow_redirects
        for _ in range(self._http_client.max_redirects + 1):
            response = await self._http_client.send(
                http_request, stream=True, follow_redirects=False
            )
            next_request = response.next_request
            if not follow or next_request is None:
                return response

            await response.aclose()
            self._apply_credentials(next_request, request)
            logger.debug(f"Following redirect to {next_request.url}")
            http_request = next_request

        raise httpx.TooManyRedirects(
            "Exceeded maximum allowed redirects.", request=http_request
        )

    def _apply_credentials(
        self, http_request: httpx.Request, request: RequestDescriptor[Any]
    ) -> None:
        """Set the Cookie header of one hop.

        An explicit ``Cookie`` header on the descriptor is always sent.
        Cookies from the client's jar only go out when the descriptor
        allows credentials.
        """
        explicit = [value for name, value in request.headers if name.lower() == "cookie"]
        if explicit:
            http_request.headers["Cookie"] = "; ".join(explicit)
        elif not request.allow_cross_origin_credentials:
            http_request.headers.pop("cookie", None)

    # ================================
    # Request building
    # ================================

    def _build_request(
        self, request: RequestDescriptor[Any], report: ProgressReporter
    ) -> httpx.Request:
        headers = list(request.headers)
        content: bytes | None = None
        files: list[tuple[str, Any]] | None = None

        match request.body:
            case StringBody(mime=mime, content=text):
                content = text.encode("utf-8")
                headers = self._with_content_type(headers, mime)
            case BytesBody(mime=mime, content=data):
                content = data
                headers = self._with_content_type(headers, mime)
            case MultipartBody(parts=parts):
                files = [self._to_file_field(part) for part in parts] or None

        built = self._http_client.build_request(
            request.method,
            request.url,
            headers=headers,
            content=content,
            files=files,
            timeout=httpx.Timeout(self._timeout_for(request)),
        )

        self._apply_credentials(built, request)

        body = built.read()
        if not body:
            return built

        # Re-wrap the encoded body so the upload can be observed chunk by chunk.
        # Content-Length is carried over, so httpx will not switch to chunked.
        return httpx.Request(
            built.method,
            built.url,
            headers=built.headers,
            content=self._upload(body, report),
            extensions=built.extensions,
        )

    def _timeout_for(self, request: RequestDescriptor[Any]) -> float | None:
        if request.timeout is not None:
            return request.timeout
        return self._settings.default_timeout

    @staticmethod
    def _has_header(headers: list[tuple[str, str]] | tuple, name: str) -> bool:
        return any(key.lower() == name for key, _ in headers)

    def _with_content_type(
        self, headers: list[tuple[str, str]], mime: str
    ) -> list[tuple[str, str]]:
        if not mime or self._has_header(headers, "content-type"):
            return headers
        return headers + [("Content-Type", mime)]

    @staticmethod
    def _to_file_field(part: Any) -> tuple[str, Any]:
        if isinstance(part, BytesPart):
            return (part.name, (part.filename, part.content, part.mime))
        # A None filename makes httpx encode a plain form field.
        return (part.name, (None, part.value.encode("utf-8")))

    # ================================
    # Streaming
    # ================================

    async def _upload(
        self, body: bytes, report: ProgressReporter
    ) -> AsyncIterator[bytes]:
        size = len(body)
        step = self._settings.chunk_size
        for start in range(0, size, step):
            yield body[start : start + step]
            report(Sending(sent=min(start + step, size), size=size))

    async def _read_body(
        self, response: httpx.Response, report: ProgressReporter
    ) -> bytes:
        size = self._content_length(response)
        chunks: list[bytes] = []
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            report(Receiving(received=response.num_bytes_downloaded, size=size))
        return b"".join(chunks)

    @staticmethod
    def _content_length(response: httpx.Response) -> int | None:
        raw = response.headers.get("content-length")
        if raw is None:
            return None
        try:
            length = int(raw)
        except ValueError:
            return None
        return length if length >= 0 else None
