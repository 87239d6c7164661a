from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Iterable, Mapping

from .models import CaptchaEvent, EventKind

__all__ = ["EVENT_KINDS", "CaptchaEventListener", "CaptchaEventRegistry"]

_logger = logging.getLogger(__name__)

CaptchaEventListener = Callable[[CaptchaEvent], Awaitable[None] | None]

EVENT_KINDS: tuple[EventKind, ...] = ("prompt", "answer", "success", "timeout", "failure")


class CaptchaEventRegistry:
    """Observers for the captcha lifecycle, owned by one presenter."""

    def __init__(
        self,
        listeners: Mapping[str, CaptchaEventListener | Iterable[CaptchaEventListener]] | None = None,
    ) -> None:
        self._listeners: dict[str, list[CaptchaEventListener]] = {kind: [] for kind in EVENT_KINDS}
        for kind, entry in (listeners or {}).items():
            if callable(entry):
                self.add_listener(kind, entry)
            else:
                for listener in entry:
                    self.add_listener(kind, listener)

    def add_listener(self, kind: str, listener: CaptchaEventListener) -> None:
        """Register *listener* for *kind*; ``"*"`` subscribes to every event."""

        kinds = EVENT_KINDS if kind == "*" else (kind,)
        for name in kinds:
            if name not in self._listeners:
                raise ValueError(f"Unknown captcha event: {name}")
            if listener not in self._listeners[name]:
                self._listeners[name].append(listener)

    def remove_listener(self, kind: str, listener: CaptchaEventListener) -> None:
        kinds = EVENT_KINDS if kind == "*" else (kind,)
        for name in kinds:
            try:
                self._listeners.get(name, []).remove(listener)
            except ValueError:
                pass

    def listeners(self, kind: str) -> list[CaptchaEventListener]:
        return list(self._listeners.get(kind, ()))

    async def dispatch(self, event: CaptchaEvent) -> None:
        for listener in self.listeners(event.kind):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.exception("Captcha listener %r raised on %s event", listener, event.kind)
