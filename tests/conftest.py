import asyncio

import pytest
import uvicorn

from src.server import app, relay
from tests.helpers import wait_until


@pytest.fixture(autouse=True)
def _clear_relay():
    """Start each test with an empty relay."""
    relay.connections.clear()
    relay.messages_relayed = 0
    yield
    relay.connections.clear()


@pytest.fixture
async def relay_url(unused_tcp_port):
    """Run the relay on a real socket for end-to-end tests."""
    config = uvicorn.Config(app, host="127.0.0.1", port=unused_tcp_port, log_level="warning")
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    await wait_until(lambda: server.started, timeout=5.0)

    yield f"ws://127.0.0.1:{unused_tcp_port}/ws"

    server.should_exit = True
    await task
