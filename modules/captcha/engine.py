from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol

from .config import CaptchaOptions
from .events import CaptchaEventRegistry
from .models import AttemptOutcome, CaptchaChallenge, CaptchaEvent, EventKind
from .sessions import AttemptSession

__all__ = ["AttemptEngine", "ResponseSource", "answers_match", "normalize_answer"]

_logger = logging.getLogger(__name__)

RepromptCallback = Callable[[AttemptSession], Awaitable[None]]

_TERMINAL_EVENTS: dict[AttemptOutcome, EventKind] = {
    AttemptOutcome.SUCCESS: "success",
    AttemptOutcome.TIMEOUT: "timeout",
    AttemptOutcome.EXHAUSTED: "failure",
}


class ResponseSource(Protocol):
    async def await_response(self, author_id: int, timeout: float) -> str | None:
        """Return the next message from *author_id*, or ``None`` on timeout."""


def normalize_answer(text: str, case_sensitive: bool) -> str:
    return text if case_sensitive else text.lower()


def answers_match(response: str, expected: str, case_sensitive: bool) -> bool:
    return normalize_answer(response, case_sensitive) == normalize_answer(expected, case_sensitive)


class AttemptEngine:
    """Drive the round loop of a single member's captcha.

    The engine only decides and reports outcomes. Rendering of retries is
    delegated to the ``reprompt`` callback and terminal side effects are left
    to the caller.
    """

    def __init__(
        self,
        options: CaptchaOptions,
        challenge: CaptchaChallenge,
        events: CaptchaEventRegistry,
    ) -> None:
        self.options = options
        self.challenge = challenge
        self.events = events

    async def run(
        self,
        member: Any,
        source: ResponseSource,
        *,
        session: AttemptSession | None = None,
        reprompt: RepromptCallback | None = None,
    ) -> AttemptSession:
        if session is None:
            session = AttemptSession.start(self.options.attempts)

        await self._emit("prompt", member, session)

        while not session.outcome.is_terminal:
            raw = await source.await_response(member.id, self.options.timeout_seconds)
            if raw is None:
                self._finish(session, AttemptOutcome.TIMEOUT, member)
                break

            answer = normalize_answer(str(raw), self.options.case_sensitive)
            session.record_response(answer)
            await self._emit("answer", member, session, response=str(raw))

            if answers_match(answer, self.challenge.text, self.options.case_sensitive):
                self._finish(session, AttemptOutcome.SUCCESS, member)
            elif session.can_retry:
                session.consume_attempt()
                _logger.debug(
                    "Incorrect captcha answer from %s; %s attempt(s) left",
                    member.id,
                    session.attempts_remaining,
                )
                if reprompt is not None:
                    await reprompt(session)
            else:
                self._finish(session, AttemptOutcome.EXHAUSTED, member)

        await self._emit(_TERMINAL_EVENTS[session.outcome], member, session)
        return session

    def _finish(self, session: AttemptSession, outcome: AttemptOutcome, member: Any) -> None:
        session.finish(outcome)
        _logger.info(
            "Captcha for member %s finished: %s after %s attempt(s)",
            member.id,
            outcome.value,
            session.attempts_taken,
        )

    async def _emit(
        self,
        kind: EventKind,
        member: Any,
        session: AttemptSession,
        *,
        response: str | None = None,
    ) -> None:
        await self.events.dispatch(
            CaptchaEvent(
                kind=kind,
                member=member,
                responses=tuple(session.responses),
                attempts=session.attempts_taken,
                captcha_text=self.challenge.text,
                options=self.options,
                response=response,
            )
        )
