from __future__ import annotations

from .config import CaptchaOptions
from .delivery import CaptchaDestination, resolve_destination
from .engine import AttemptEngine, answers_match, normalize_answer
from .events import CaptchaEventRegistry
from .generator import generate_captcha
from .models import (
    AttemptOutcome,
    CaptchaChallenge,
    CaptchaConfigError,
    CaptchaDeliveryError,
    CaptchaEvent,
    DestinationUnavailableError,
)
from .presenter import CaptchaPresenter
from .sessions import AttemptSession, CaptchaSessionStore

__all__ = [
    "AttemptEngine",
    "AttemptOutcome",
    "AttemptSession",
    "CaptchaChallenge",
    "CaptchaConfigError",
    "CaptchaDeliveryError",
    "CaptchaDestination",
    "CaptchaEvent",
    "CaptchaEventRegistry",
    "CaptchaOptions",
    "CaptchaPresenter",
    "CaptchaSessionStore",
    "DestinationUnavailableError",
    "answers_match",
    "generate_captcha",
    "normalize_answer",
    "resolve_destination",
]
