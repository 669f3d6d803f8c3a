"""
Timer sync wire protocol.

One JSON object per WebSocket text frame. Nothing here is interpreted by
the relay; only timer controllers parse these messages.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TimerMessageType(StrEnum):
    START = "timer_start"
    PAUSE = "timer_pause"
    RESET = "timer_reset"
    UPDATE = "timer_update"


class TimerMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    type: TimerMessageType
    session_id: str | None = Field(None, alias="sessionId")
    duration: int | None = Field(None, ge=0, description="Remaining seconds (updates only)")
    exercise_id: str | None = Field(None, alias="exerciseId")

    def to_json(self) -> str:
        """Serialize with wire field names, dropping absent fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


def parse_message(raw: str | bytes) -> TimerMessage:
    """Parse a raw frame. Raises pydantic.ValidationError on malformed input."""
    return TimerMessage.model_validate_json(raw)
