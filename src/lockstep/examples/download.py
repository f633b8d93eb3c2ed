"""Download a file while watching its progress, then change your mind.

Set LOCKSTEP_DEMO_URL to the file to fetch (a .env file works too). Any
LOCKSTEP_* engine settings are picked up as well.
"""

import asyncio
import logging
import os

from dotenv import load_dotenv

from lockstep.config import EngineSettings
from lockstep.protocol.errors import Ok
from lockstep.protocol.events import Outcome, ProgressEvent, Receiving, Waiting
from lockstep.protocol.expect import expect_bytes
from lockstep.protocol.request import get
from lockstep.runtime.engine import RequestEngine
from lockstep.transport.httpx_transport import HttpxTransport

DEFAULT_URL = "https://httpbin.org/bytes/102400"


async def main():
    url = os.getenv("LOCKSTEP_DEMO_URL", DEFAULT_URL)
    settings = EngineSettings()
    finished = asyncio.Event()

    def on_event(event: ProgressEvent) -> None:
        match event:
            case Receiving(received=received, size=size):
                logging.info(f"Received {received} of {size or '?'} bytes")
            case Waiting():
                logging.info("A queued download was superseded")
            case Outcome(result=Ok(value=body)):
                logging.info(f"Done: {len(body)} bytes")
                finished.set()
            case Outcome(result=result):
                logging.info(f"Failed: {result.error}")
                finished.set()

    async with HttpxTransport(settings=settings) as transport:
        async with RequestEngine(transport, settings) as engine:
            engine.subscribe("download", on_event)
            await engine.update({"download": get(url, expect=expect_bytes())})
            await finished.wait()

            # Nothing is wanted any more; the settled tracker is released.
            await engine.update({})
            await engine.drain()
            logging.info(f"Tracked after release: {engine.tracked_ids()}")


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
