"""Core data models for the autopilot agent."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .outcome import Outcome

ActionType = Literal[
    "click",
    "double_tap",
    "long_press",
    "swipe",
    "type",
    "system_button",
    "open_app",
    "wait",
    "answer",
    "take_over",
    "invalid",
]

TAP_ACTIONS = frozenset({"click", "double_tap", "long_press"})

_ACTION_ALIASES = {
    "tap": "click",
    "doubletap": "double_tap",
    "longpress": "long_press",
    "input": "type",
    "type_text": "type",
    "key": "system_button",
    "launch": "open_app",
    "open": "open_app",
    "takeover": "take_over",
}

_REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "click": ("x", "y"),
    "double_tap": ("x", "y"),
    "long_press": ("x", "y"),
    "swipe": ("x", "y", "x2", "y2"),
    "type": ("text",),
    "system_button": ("button",),
    "open_app": ("text",),
    "answer": ("text",),
}


class Action(BaseModel):
    type: ActionType
    x: Optional[int] = None
    y: Optional[int] = None
    x2: Optional[int] = None
    y2: Optional[int] = None
    text: Optional[str] = None
    button: Optional[str] = None
    duration: Optional[int] = None
    message: Optional[str] = None
    need_confirm: bool = False

    @model_validator(mode="after")
    def _check_required_fields(self) -> "Action":
        missing = [name for name in _REQUIRED_FIELDS.get(self.type, ()) if getattr(self, name) is None]
        if missing:
            raise ValueError(f"{self.type} action is missing {', '.join(missing)}")
        return self

    @classmethod
    def invalid(cls) -> "Action":
        return cls(type="invalid")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Action":
        """Build an action from the JSON object the model emits.

        Accepts ``{"action": "click", "coordinate": [x, y]}`` style payloads as
        well as flat ``x``/``y`` keys. Raises ``ValueError`` when the payload
        does not describe a usable action.
        """
        raw_type = str(payload.get("action") or payload.get("type") or "").strip().lower()
        raw_type = raw_type.replace("-", "_").replace(" ", "_")
        action_type = _ACTION_ALIASES.get(raw_type.replace("_", ""), raw_type)
        if action_type == "invalid":
            raise ValueError("Model may not emit invalid actions")

        fields: Dict[str, Any] = {"type": action_type}
        start = _point(payload.get("coordinate")) or _point([payload.get("x"), payload.get("y")])
        end = _point(payload.get("coordinate2") or payload.get("end_coordinate")) or _point(
            [payload.get("x2"), payload.get("y2")]
        )
        if start:
            fields["x"], fields["y"] = start
        if end:
            fields["x2"], fields["y2"] = end

        text = payload.get("text")
        if text is None and action_type == "open_app":
            text = payload.get("app") or payload.get("app_name")
        if text is not None:
            fields["text"] = str(text)
        for key in ("button", "message"):
            if payload.get(key) is not None:
                fields[key] = str(payload[key])
        if payload.get("duration") is not None:
            try:
                fields["duration"] = int(float(payload["duration"]))
            except (OverflowError, TypeError) as exc:
                raise ValueError(f"Bad duration: {payload['duration']!r}") from exc
        fields["need_confirm"] = _flag(payload.get("need_confirm", False))
        return cls.model_validate(fields)

    @property
    def requires_confirmation(self) -> bool:
        return self.need_confirm or (self.message is not None and self.type in TAP_ACTIONS)

    def describe(self) -> str:
        if self.type in TAP_ACTIONS:
            return f"{self.type} ({self.x}, {self.y})"
        if self.type == "swipe":
            return f"swipe ({self.x}, {self.y}) -> ({self.x2}, {self.y2})"
        if self.type == "system_button":
            return f"press {self.button}"
        if self.type in ("type", "open_app", "answer"):
            return f"{self.type}: {self.text}"
        if self.type == "wait":
            return f"wait {self.duration or 3}s"
        return self.type


def _point(value: Any) -> Optional[Tuple[int, int]]:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    if value[0] is None or value[1] is None:
        return None
    try:
        return int(round(float(value[0]))), int(round(float(value[1])))
    except (TypeError, ValueError, OverflowError):
        return None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1"}


class ExecutionStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int
    timestamp: float = Field(default_factory=time.time)
    action: str
    description: str
    thought: str = ""
    outcome: Outcome = Outcome.PENDING

    def with_outcome(self, outcome: Outcome) -> "ExecutionStep":
        if self.outcome is not Outcome.PENDING:
            raise ValueError(f"Step {self.step} outcome already finalized as {self.outcome.value}")
        return self.model_copy(update={"outcome": outcome})


class AgentState(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_running: bool = False
    is_completed: bool = False
    current_step: int = 0
    instruction: str = ""
    answer: Optional[str] = None
    execution_steps: Tuple[ExecutionStep, ...] = ()


class Termination(str, Enum):
    COMPLETED = "completed"
    SENSITIVE_ABORT = "sensitive_abort"
    USER_STOPPED = "user_stopped"
    MAX_STEPS = "max_steps"


class AgentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    termination: Optional[Termination] = None


class Observation(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: Image.Image
    is_sensitive: bool = False
    is_fallback: bool = False

    @classmethod
    def placeholder(cls, width: int = 1080, height: int = 2400, *, is_sensitive: bool = False) -> "Observation":
        frame = Image.new("RGB", (max(1, width), max(1, height)), color="black")
        return cls(image=frame, is_sensitive=is_sensitive, is_fallback=True)
