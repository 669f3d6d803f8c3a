"""
Workout Timer Relay

Broadcast relay for workout timer synchronization.
Every message a client sends is forwarded verbatim to every other client.
"""

import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)

# ============================================================
# CONSTANTS
# ============================================================

MAX_CONNECTIONS = 1000


# ============================================================
# MODELS
# ============================================================


class HealthResponse(BaseModel):
    status: str
    connections: int
    messages_relayed: int


# ============================================================
# RELAY CLASS
# ============================================================


class BroadcastRelay:
    """Session-agnostic fan-out of opaque payloads."""

    def __init__(self, max_connections: int = MAX_CONNECTIONS):
        self.max_connections = max_connections

        # Live WebSocket connections
        self.connections: dict[str, WebSocket] = {}

        self.messages_relayed = 0

    async def connect(self, websocket: WebSocket) -> str | None:
        """Accept and register a connection. Returns its id, or None if refused."""
        if len(self.connections) >= self.max_connections:
            await websocket.close(code=4029, reason="Too many connections")
            return None

        await websocket.accept()
        conn_id = f"conn_{uuid.uuid4().hex[:8]}"
        self.connections[conn_id] = websocket
        logger.info("Client %s connected (%d live)", conn_id, len(self.connections))
        return conn_id

    def disconnect(self, conn_id: str):
        """Remove a connection. Safe to call more than once."""
        if self.connections.pop(conn_id, None) is not None:
            logger.info("Client %s disconnected (%d live)", conn_id, len(self.connections))

    async def broadcast(self, sender_id: str, payload: str | bytes) -> int:
        """Forward payload to every connection except the sender."""
        delivered = 0
        failed = []

        # Snapshot: a recipient may disconnect while we are awaiting a send
        for conn_id, ws in list(self.connections.items()):
            if conn_id == sender_id or conn_id not in self.connections:
                continue
            if ws.client_state != WebSocketState.CONNECTED:
                continue
            try:
                if isinstance(payload, bytes):
                    await ws.send_bytes(payload)
                else:
                    await ws.send_text(payload)
                delivered += 1
            except Exception:
                logger.warning("Failed to relay message to %s", conn_id)
                failed.append(conn_id)

        for conn_id in failed:
            self.disconnect(conn_id)

        self.messages_relayed += 1
        return delivered

    async def close_all(self):
        """Close every live connection. Called on shutdown."""
        for _conn_id, ws in list(self.connections.items()):
            with contextlib.suppress(Exception):
                await ws.close(code=1001, reason="Relay shutting down")
        self.connections.clear()


# Global relay
relay = BroadcastRelay()


# ============================================================
# FASTAPI APP
# ============================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Workout Timer Relay started")
    yield
    await relay.close_all()
    logger.info("Workout Timer Relay stopped")


app = FastAPI(
    title="Workout Timer Relay",
    description="Broadcast relay keeping workout rest timers in sync across clients",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# HEALTH CHECK
# ============================================================


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        connections=len(relay.connections),
        messages_relayed=relay.messages_relayed,
    )


# ============================================================
# WEBSOCKET ENDPOINT
# ============================================================


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Shared timer channel.

    Frames (text or binary) are relayed to all other connected clients unchanged.
    The relay does not parse them; clients filter on sessionId.
    """
    conn_id = await relay.connect(websocket)
    if conn_id is None:
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            payload = message.get("text")
            if payload is None:
                payload = message.get("bytes")
            if payload is None:
                continue
            await relay.broadcast(conn_id, payload)

    except WebSocketDisconnect:
        relay.disconnect(conn_id)
    except Exception:
        logger.warning("WebSocket error for client %s", conn_id)
        relay.disconnect(conn_id)


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8003)
