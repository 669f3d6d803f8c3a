import asyncio
import json

from websockets.exceptions import ConnectionClosedError
from websockets.protocol import State


async def wait_until(predicate, timeout: float = 2.0):
    """Poll until predicate() is truthy or fail after timeout."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class FakeChannel:
    """Stands in for a client websocket connection; records what is sent."""

    def __init__(self, fail_sends: bool = False, on_send=None):
        self.state = State.OPEN
        self.fail_sends = fail_sends
        self.on_send = on_send
        self.sent: list[dict] = []

    async def send(self, data: str):
        if self.fail_sends:
            raise ConnectionClosedError(None, None)
        message = json.loads(data)
        self.sent.append(message)
        if self.on_send:
            self.on_send(message)

    async def close(self):
        self.state = State.CLOSED

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]
