"""
Workout Timer Controller

Client side of the timer sync protocol. Each controller owns one
exercise's countdown, ticks locally once per second, and keeps loosely
in step with other clients viewing the same session through the relay.
"""

import array
import asyncio
import contextlib
import logging
import math
from collections.abc import Callable

import websockets
from pydantic import BaseModel, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from src.protocol import TimerMessage, TimerMessageType, parse_message

logger = logging.getLogger(__name__)

# ============================================================
# CONSTANTS
# ============================================================

DEFAULT_RELAY_URL = "ws://127.0.0.1:8003/ws"
TICK_INTERVAL_SECONDS = 1.0

TONE_FREQUENCY_HZ = 800
TONE_DURATION_SECONDS = 0.5
TONE_START_GAIN = 0.3
TONE_END_GAIN = 0.01
TONE_SAMPLE_RATE = 44100


# ============================================================
# COMPLETION TONE
# ============================================================


def render_tone(
    frequency: float = TONE_FREQUENCY_HZ,
    duration: float = TONE_DURATION_SECONDS,
    sample_rate: int = TONE_SAMPLE_RATE,
) -> bytes:
    """Sine beep with an exponential decay envelope, as 16-bit mono PCM."""
    count = int(sample_rate * duration)
    decay = math.log(TONE_END_GAIN / TONE_START_GAIN)
    samples = array.array("h")
    for i in range(count):
        t = i / sample_rate
        gain = TONE_START_GAIN * math.exp(decay * t / duration)
        samples.append(int(32767 * gain * math.sin(2 * math.pi * frequency * t)))
    return samples.tobytes()


def play_completion_tone():
    """Best-effort beep. Missing audio support is not an error."""
    try:
        import simpleaudio

        simpleaudio.play_buffer(render_tone(), 1, 2, TONE_SAMPLE_RATE)
    except Exception:
        logger.debug("Audio not supported, skipping completion tone")


# ============================================================
# MODELS
# ============================================================


def format_time(seconds: int) -> str:
    """Render seconds as MM:SS."""
    mins, secs = divmod(max(seconds, 0), 60)
    return f"{mins:02d}:{secs:02d}"


class TimerStatus(BaseModel):
    session_id: str
    exercise_name: str
    initial_duration: int
    time_remaining: int
    is_running: bool
    is_completed: bool
    connected: bool
    display: str
    progress_percentage: float


# ============================================================
# TIMER CONTROLLER
# ============================================================


class TimerController:
    """One client's view of a session's rest timer."""

    def __init__(
        self,
        initial_duration: int,
        exercise_name: str,
        session_id: str,
        on_complete: Callable[[], None] | None = None,
        on_tick: Callable[[int], None] | None = None,
        *,
        url: str = DEFAULT_RELAY_URL,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        chime: Callable[[], None] = play_completion_tone,
    ):
        if isinstance(initial_duration, bool) or not isinstance(initial_duration, int):
            raise ValueError("initial_duration must be an integer number of seconds")
        if initial_duration < 0:
            raise ValueError("initial_duration must be >= 0")
        if not session_id:
            raise ValueError("session_id must be non-empty")

        self.initial_duration = initial_duration
        self.exercise_name = exercise_name
        self.session_id = session_id
        self.on_complete = on_complete
        self.on_tick = on_tick
        self.url = url
        self.tick_interval = tick_interval
        self.chime = chime

        self.time_remaining = initial_duration
        self.is_running = False
        self.is_completed = False

        self._ws = None
        self._listener: asyncio.Task | None = None
        self._ticker: asyncio.Task | None = None
        self._closed = False

    # ---------- connection lifecycle ----------

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def connect(self) -> bool:
        """Open the relay channel. Failure leaves the timer usable locally."""
        if self._closed:
            return False
        if self._ws is not None:
            return self.connected

        try:
            self._ws = await websockets.connect(self.url)
        except (OSError, WebSocketException) as e:
            logger.warning("Timer sync unavailable (%s): %s", self.url, e)
            return False

        logger.info("Timer channel connected for session %s", self.session_id)
        self._listener = asyncio.create_task(self._listen())
        return True

    async def close(self):
        """Tear down: stop ticking, stop listening, close the channel."""
        if self._closed:
            return
        self._closed = True

        tasks = [t for t in (self._ticker, self._listener) if t is not None]
        self._ticker = None
        self._listener = None
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()

        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

        for task in tasks:
            if task is not current:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ---------- local actions ----------

    async def start(self) -> bool:
        """Start (or resume) counting down."""
        if self.is_completed or self._closed:
            return False

        self.is_running = True
        self._restart_ticker()
        await self._send(TimerMessageType.START)

        if self.time_remaining <= 0:
            self._complete()
        return True

    async def pause(self) -> bool:
        """Stop counting down, keeping the remaining time."""
        if self._closed:
            return False

        self.is_running = False
        self._stop_ticker()
        await self._send(TimerMessageType.PAUSE)
        return True

    async def reset(self) -> bool:
        """Back to the initial duration, stopped and not completed."""
        if self._closed:
            return False

        self._reset_state()
        await self._send(TimerMessageType.RESET)
        return True

    def skip(self) -> bool:
        """Finish immediately. Local only: other clients are not told."""
        if self.is_completed or self._closed:
            return False

        self.time_remaining = 0
        self.is_running = False
        self.is_completed = True
        self._stop_ticker()
        if self.on_complete:
            self.on_complete()
        return True

    # ---------- inbound ----------

    def handle_message(self, raw: str | bytes):
        """Apply a message relayed from another client."""
        try:
            message = parse_message(raw)
        except ValidationError as e:
            logger.warning("Discarding malformed timer message: %s", e.errors()[0]["msg"])
            return

        if message.session_id != self.session_id or self._closed:
            return

        if message.type == TimerMessageType.START:
            if self.is_completed:
                return
            self.is_running = True
            if self.time_remaining <= 0:
                self._complete()
            else:
                self._restart_ticker()

        elif message.type == TimerMessageType.PAUSE:
            self.is_running = False
            self._stop_ticker()

        elif message.type == TimerMessageType.RESET:
            self._reset_state()

        elif message.type == TimerMessageType.UPDATE:
            if message.duration is None or self.is_completed:
                return
            self.time_remaining = message.duration
            if self.time_remaining == 0:
                self._complete()
            else:
                # Re-phase on the sender's tick so running clients count at one rate
                self._restart_ticker()

    # ---------- views ----------

    @property
    def progress_percentage(self) -> float:
        if self.initial_duration == 0:
            return 100.0
        return (self.initial_duration - self.time_remaining) / self.initial_duration * 100

    def status(self) -> TimerStatus:
        return TimerStatus(
            session_id=self.session_id,
            exercise_name=self.exercise_name,
            initial_duration=self.initial_duration,
            time_remaining=self.time_remaining,
            is_running=self.is_running,
            is_completed=self.is_completed,
            connected=self.connected,
            display=format_time(self.time_remaining),
            progress_percentage=self.progress_percentage,
        )

    # ---------- internals ----------

    def _reset_state(self):
        self.time_remaining = self.initial_duration
        self.is_running = False
        self.is_completed = False
        self._stop_ticker()

    def _restart_ticker(self):
        self._stop_ticker()
        if self.is_running and self.time_remaining > 0 and not self._closed:
            self._ticker = asyncio.create_task(self._run())

    def _stop_ticker(self):
        task, self._ticker = self._ticker, None
        # The tick loop may itself trigger a stop; it exits on its own then
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _complete(self):
        self.time_remaining = 0
        self.is_running = False
        self.is_completed = True
        self._stop_ticker()

        try:
            self.chime()
        except Exception:
            logger.debug("Completion tone failed", exc_info=True)

        if self.on_complete:
            self.on_complete()

    async def _run(self):
        """Tick loop - one decrement per interval."""
        me = asyncio.current_task()
        try:
            while self._ticker is me and self.is_running and self.time_remaining > 0:
                await asyncio.sleep(self.tick_interval)
                await self._tick()
        except asyncio.CancelledError:
            pass

    async def _tick(self):
        self.time_remaining -= 1
        remaining = self.time_remaining

        if self.connected:
            await self._send(TimerMessageType.UPDATE, duration=remaining)

        # Inbound messages handled during the send may have moved the timer on
        if self._ticker is not asyncio.current_task() or self.time_remaining != remaining:
            return

        if self.on_tick:
            self.on_tick(remaining)

        if remaining <= 0:
            self._complete()

    async def _send(self, message_type: TimerMessageType, duration: int | None = None) -> bool:
        if not self.connected:
            logger.debug("Timer channel not open, skipping %s", message_type)
            return False

        message = TimerMessage(
            type=message_type,
            session_id=self.session_id,
            duration=duration,
            exercise_id=self.exercise_name,
        )
        try:
            await self._ws.send(message.to_json())
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.warning("Failed to send %s: %s", message_type, e)
            return False
        return True

    async def _listen(self):
        try:
            async for raw in self._ws:
                self.handle_message(raw)
        except ConnectionClosed as e:
            logger.info("Timer channel closed for session %s: %s", self.session_id, e)
        except asyncio.CancelledError:
            pass


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    async def _demo(session_id: str, seconds: int):
        done = asyncio.Event()
        timer = TimerController(
            seconds,
            "Rest",
            session_id,
            on_complete=done.set,
            on_tick=lambda remaining: print(format_time(remaining)),
        )
        async with timer:
            await timer.start()
            await done.wait()

    session = sys.argv[1] if len(sys.argv) > 1 else "demo"
    seconds = int(sys.argv[2]) if len(sys.argv) > 2 else 10
    asyncio.run(_demo(session, seconds))
