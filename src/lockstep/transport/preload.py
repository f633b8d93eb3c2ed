"""Transport for server-side rendering.

While a page is rendered on the server no request should actually go out.
The renderer only wants to know which URLs the page asked for so it can
prefetch them or emit preload hints. Exchanges therefore never complete.
"""

import asyncio
import logging
from typing import Any

from lockstep.protocol.request import RequestDescriptor
from lockstep.protocol.response import RawResponse
from lockstep.transport.base import ProgressReporter, Transport

logger = logging.getLogger(__name__)


class PreloadTransport(Transport):
    def __init__(self) -> None:
        self.preloaded: set[str] = set()

    async def exchange(
        self, request: RequestDescriptor[Any], report: ProgressReporter
    ) -> RawResponse:
        self.preloaded.add(request.url)
        logger.debug(f"Recorded preload for {request.url}")
        # Parked until the engine cancels the operation.
        await asyncio.Future()
        raise AssertionError("unreachable")
