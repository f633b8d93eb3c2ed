"""What a transport hands back after one HTTP exchange.

A transport never interprets a response. It reports one of five raw
shapes and the request's interpreter turns that into a typed result.
"""

from collections.abc import Iterable
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ResponseModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class Metadata(ResponseModel):
    """
    Status line and headers of a completed response.
    """

    url: str
    """
    Final URL of the response, after any redirects were followed.
    """

    status_code: int = Field(alias="statusCode")
    status_text: str = Field(default="", alias="statusText")

    headers: dict[str, str] = Field(default_factory=dict)
    """
    Response headers. Repeated header names are merged into a single
    comma-separated value, in the order the server sent them.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class BadUrlResponse(ResponseModel):
    kind: Literal["bad_url"] = "bad_url"
    url: str


class TimeoutResponse(ResponseModel):
    kind: Literal["timeout"] = "timeout"


class NetworkErrorResponse(ResponseModel):
    kind: Literal["network_error"] = "network_error"


class BadStatusResponse(ResponseModel):
    kind: Literal["bad_status"] = "bad_status"
    metadata: Metadata
    body: bytes = b""


class GoodStatusResponse(ResponseModel):
    kind: Literal["good_status"] = "good_status"
    metadata: Metadata
    body: bytes = b""


RawResponse = (
    BadUrlResponse
    | TimeoutResponse
    | NetworkErrorResponse
    | BadStatusResponse
    | GoodStatusResponse
)


def is_good_status(status_code: int) -> bool:
    return 200 <= status_code < 300


def status_response(metadata: Metadata, body: bytes) -> RawResponse:
    """Classify a completed exchange by its status code."""
    if is_good_status(metadata.status_code):
        return GoodStatusResponse(metadata=metadata, body=body)
    return BadStatusResponse(metadata=metadata, body=body)


def merge_headers(pairs: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Fold raw header pairs into a dict, joining repeats with ", ".

    Names are lowercased so that ``Set-Cookie`` and ``set-cookie`` land in
    the same slot.
    """
    merged: dict[str, str] = {}
    for name, value in pairs:
        key = name.lower()
        if key in merged:
            merged[key] = f"{merged[key]}, {value}"
        else:
            merged[key] = value
    return merged

