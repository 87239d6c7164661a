from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .config import CaptchaOptions

__all__ = [
    "AttemptOutcome",
    "CaptchaChallenge",
    "CaptchaConfigError",
    "CaptchaDeliveryError",
    "CaptchaEvent",
    "DestinationUnavailableError",
    "EventKind",
]

EventKind = Literal["prompt", "answer", "success", "timeout", "failure"]


class CaptchaConfigError(ValueError):
    """Raised when captcha options are invalid."""


class CaptchaDeliveryError(RuntimeError):
    """Raised when the platform rejects a captcha message."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DestinationUnavailableError(CaptchaDeliveryError):
    """Raised when neither the DM channel nor the configured channel is reachable."""


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptOutcome.PENDING


@dataclass(frozen=True, slots=True)
class CaptchaChallenge:
    image: bytes
    text: str

    def is_valid(self) -> bool:
        return isinstance(self.image, (bytes, bytearray)) and bool(self.image) and bool(self.text)

    @classmethod
    def coerce(cls, raw: Any) -> "CaptchaChallenge | None":
        """Accept a challenge instance or an ``{"image": ..., "text": ...}`` mapping."""

        if isinstance(raw, cls):
            challenge = raw
        elif isinstance(raw, dict):
            challenge = cls(image=raw.get("image"), text=raw.get("text"))  # type: ignore[arg-type]
        else:
            image = getattr(raw, "image", None)
            text = getattr(raw, "text", None)
            if image is None and text is None:
                return None
            challenge = cls(image=image, text=text)  # type: ignore[arg-type]
        if not challenge.is_valid() or not isinstance(challenge.text, str):
            return None
        return challenge


@dataclass(frozen=True, slots=True)
class CaptchaEvent:
    """Notification payload pushed to captcha listeners."""

    kind: EventKind
    member: Any
    responses: tuple[str, ...]
    attempts: int
    captcha_text: str
    options: "CaptchaOptions"
    response: str | None = None
