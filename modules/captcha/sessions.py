from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Tuple

from .models import AttemptOutcome

__all__ = ["AttemptSession", "CaptchaSessionStore"]


@dataclass(slots=True)
class AttemptSession:
    """Run-time state of one in-flight captcha presentation."""

    attempts_remaining: int
    attempts_taken: int = 1
    responses: list[str] = field(default_factory=list)
    outcome: AttemptOutcome = AttemptOutcome.PENDING

    @classmethod
    def start(cls, max_attempts: int) -> "AttemptSession":
        return cls(attempts_remaining=max_attempts)

    @property
    def can_retry(self) -> bool:
        return self.attempts_remaining > 1

    def record_response(self, response: str) -> None:
        self.responses.append(response)

    def consume_attempt(self) -> None:
        self.attempts_remaining -= 1
        self.attempts_taken += 1

    def finish(self, outcome: AttemptOutcome) -> None:
        if self.outcome.is_terminal:
            raise RuntimeError(f"Captcha session already finished with {self.outcome.value}")
        self.outcome = outcome


class CaptchaSessionStore:
    """In-memory registry of members with a captcha in flight."""

    def __init__(self) -> None:
        self._sessions: Dict[Tuple[int, int], AttemptSession] = {}
        self._lock = asyncio.Lock()

    async def claim(self, guild_id: int, user_id: int, session: AttemptSession) -> bool:
        """Register *session* unless the member already has one in flight."""

        key = (guild_id, user_id)
        async with self._lock:
            if key in self._sessions:
                return False
            self._sessions[key] = session
            return True

    async def remove(self, guild_id: int, user_id: int) -> None:
        async with self._lock:
            self._sessions.pop((guild_id, user_id), None)
