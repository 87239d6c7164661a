from __future__ import annotations

import asyncio
import io
import random

import pytest
from PIL import Image

from modules.captcha.config import CaptchaOptions
from modules.captcha.engine import AttemptEngine, answers_match, normalize_answer
from modules.captcha.events import CaptchaEventRegistry
from modules.captcha.generator import ALPHABET, UPPERCASE, generate_captcha
from modules.captcha.models import (
    AttemptOutcome,
    CaptchaChallenge,
    CaptchaConfigError,
    CaptchaEvent,
)
from modules.captcha.sessions import AttemptSession, CaptchaSessionStore


class DummyGuild:
    def __init__(self, guild_id: int = 100) -> None:
        self.id = guild_id


class DummyMember:
    def __init__(self, member_id: int = 7) -> None:
        self.id = member_id
        self.guild = DummyGuild()


class DummySource:
    """Replays scripted answers; ``None`` stands for a timed out round."""

    def __init__(self, answers: list[str | None]) -> None:
        self._answers = list(answers)
        self.waits: list[tuple[int, float]] = []

    async def await_response(self, author_id: int, timeout: float) -> str | None:
        self.waits.append((author_id, timeout))
        if not self._answers:
            return None
        return self._answers.pop(0)


def _options(**overrides: object) -> CaptchaOptions:
    values: dict[str, object] = {"role_id": 555}
    values.update(overrides)
    return CaptchaOptions(**values)  # type: ignore[arg-type]


def _run_engine(
    options: CaptchaOptions,
    expected: str,
    answers: list[str | None],
) -> tuple[AttemptSession, list[CaptchaEvent], list[int], DummySource]:
    events: list[CaptchaEvent] = []
    reprompts: list[int] = []
    registry = CaptchaEventRegistry({"*": events.append})
    engine = AttemptEngine(options, CaptchaChallenge(image=b"png", text=expected), registry)
    source = DummySource(answers)

    async def reprompt(session: AttemptSession) -> None:
        reprompts.append(session.attempts_remaining)

    async def run() -> AttemptSession:
        return await engine.run(DummyMember(), source, reprompt=reprompt)

    session = asyncio.run(run())
    return session, events, reprompts, source


def test_options_defaults() -> None:
    options = _options()

    assert options.send_to_text_channel is False
    assert options.add_role_on_success is True
    assert options.kick_on_failure is True
    assert options.case_sensitive is True
    assert options.attempts == 1
    assert options.timeout == 60000
    assert options.show_attempt_count is True
    assert options.timeout_seconds == 60.0
    assert options.kicks_on_timeout is True


def test_options_require_role_when_granting() -> None:
    with pytest.raises(CaptchaConfigError):
        CaptchaOptions(add_role_on_success=True, role_id=None)


def test_options_require_channel_for_text_delivery() -> None:
    with pytest.raises(CaptchaConfigError):
        _options(send_to_text_channel=True)


@pytest.mark.parametrize("field", ["attempts", "timeout"])
def test_options_reject_non_positive_limits(field: str) -> None:
    with pytest.raises(CaptchaConfigError):
        _options(**{field: 0})


def test_options_without_role_grant_need_no_role() -> None:
    options = CaptchaOptions(add_role_on_success=False)

    assert options.role_id is None


def test_options_from_mapping_accepts_option_names() -> None:
    options = CaptchaOptions.from_mapping(
        {
            "roleID": "123",
            "channelID": "<#456>",
            "sendToTextChannel": True,
            "caseSensitive": False,
            "attempts": 3,
            "timeout": 30000,
            "showAttemptCount": False,
        }
    )

    assert options.role_id == 123
    assert options.channel_id == 456
    assert options.send_to_text_channel is True
    assert options.case_sensitive is False
    assert options.attempts == 3
    assert options.timeout_seconds == 30.0
    assert options.show_attempt_count is False


def test_options_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(CaptchaConfigError):
        CaptchaOptions.from_mapping({"roleID": 1, "retries": 2})


def test_options_merged_revalidates() -> None:
    base = _options()
    merged = base.merged(attempts=3, kickOnFailure=False)

    assert merged.attempts == 3
    assert merged.kick_on_failure is False
    assert base.attempts == 1

    with pytest.raises(CaptchaConfigError):
        base.merged(role_id=None)


def test_options_merged_coerces_ids() -> None:
    merged = _options().merged(roleID="123", channelID="<#456>", sendToTextChannel=True)

    assert merged.role_id == 123
    assert merged.channel_id == 456

    with pytest.raises(CaptchaConfigError):
        _options().merged(roleID="not-an-id")


def test_kick_on_timeout_overrides_failure_setting() -> None:
    options = _options(kick_on_failure=True, kick_on_timeout=False)

    assert options.kick_on_failure is True
    assert options.kicks_on_timeout is False


def test_options_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPTCHA_ROLE_ID", "42")
    monkeypatch.setenv("CAPTCHA_CHANNEL_ID", "43")
    monkeypatch.setenv("CAPTCHA_SEND_TO_TEXT_CHANNEL", "yes")
    monkeypatch.setenv("CAPTCHA_CASE_SENSITIVE", "false")
    monkeypatch.setenv("CAPTCHA_ATTEMPTS", "3")
    monkeypatch.setenv("CAPTCHA_TIMEOUT_MS", "not-a-number")
    monkeypatch.delenv("CAPTCHA_KICK_ON_TIMEOUT", raising=False)

    options = CaptchaOptions.from_env()

    assert options.role_id == 42
    assert options.channel_id == 43
    assert options.send_to_text_channel is True
    assert options.case_sensitive is False
    assert options.attempts == 3
    assert options.timeout == 60000
    assert options.kick_on_timeout is None


def test_options_from_env_fails_on_invalid_combination(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CAPTCHA_ROLE_ID", raising=False)
    monkeypatch.delenv("CAPTCHA_ADD_ROLE_ON_SUCCESS", raising=False)

    with pytest.raises(CaptchaConfigError):
        CaptchaOptions.from_env()


def test_normalize_answer_is_idempotent() -> None:
    once = normalize_answer("AbC12x", False)

    assert once == "abc12x"
    assert normalize_answer(once, False) == once
    assert normalize_answer("AbC12x", True) == "AbC12x"


def test_answers_match_case_insensitive() -> None:
    assert answers_match("ab3f9q", "AB3F9Q", case_sensitive=False)
    assert not answers_match("ab3f9q", "AB3F9Q", case_sensitive=True)


def test_engine_success_after_retry() -> None:
    session, events, reprompts, _ = _run_engine(
        _options(attempts=3, case_sensitive=True),
        "K7TPLX",
        ["wrong1", "K7TPLX"],
    )

    assert session.outcome is AttemptOutcome.SUCCESS
    assert session.attempts_taken == 2
    assert session.responses == ["wrong1", "K7TPLX"]
    assert reprompts == [2]
    assert [event.kind for event in events] == ["prompt", "answer", "answer", "success"]
    assert events[-1].responses == ("wrong1", "K7TPLX")
    assert events[-1].attempts == 2
    assert events[-1].captcha_text == "K7TPLX"


@pytest.mark.parametrize("attempts", [1, 2, 5])
def test_engine_exhausts_after_all_wrong_answers(attempts: int) -> None:
    answers: list[str | None] = [f"nope{i}" for i in range(attempts)]
    session, events, reprompts, _ = _run_engine(_options(attempts=attempts), "ABCDEF", answers)

    assert session.outcome is AttemptOutcome.EXHAUSTED
    assert session.attempts_taken == attempts
    assert len(session.responses) == attempts
    assert len(reprompts) == attempts - 1
    assert events[-1].kind == "failure"
    assert [event.kind for event in events].count("answer") == attempts


def test_engine_single_attempt_never_reprompts() -> None:
    session, events, reprompts, _ = _run_engine(_options(attempts=1), "ABCDEF", ["wrong"])

    assert session.outcome is AttemptOutcome.EXHAUSTED
    assert session.attempts_taken == 1
    assert reprompts == []
    assert [event.kind for event in events] == ["prompt", "answer", "failure"]


def test_engine_timeout_is_not_retried() -> None:
    session, events, reprompts, source = _run_engine(_options(attempts=3, timeout=1500), "ABCDEF", [None])

    assert session.outcome is AttemptOutcome.TIMEOUT
    assert session.responses == []
    assert session.attempts_remaining == 3
    assert reprompts == []
    assert source.waits == [(7, 1.5)]
    assert [event.kind for event in events] == ["prompt", "timeout"]


def test_engine_timeout_after_wrong_answer() -> None:
    session, events, _, _ = _run_engine(_options(attempts=3), "ABCDEF", ["wrong", None])

    assert session.outcome is AttemptOutcome.TIMEOUT
    assert session.responses == ["wrong"]
    assert session.attempts_taken == 2
    assert events[-1].kind == "timeout"
    assert events[-1].responses == ("wrong",)


def test_engine_first_correct_answer_wins_regardless_of_attempts() -> None:
    session, events, reprompts, source = _run_engine(_options(attempts=5), "ABCDEF", ["ABCDEF", "extra"])

    assert session.outcome is AttemptOutcome.SUCCESS
    assert session.attempts_taken == 1
    assert session.attempts_remaining == 5
    assert reprompts == []
    assert len(source.waits) == 1


def test_engine_case_insensitive_match_records_normalized_history() -> None:
    session, events, _, _ = _run_engine(_options(case_sensitive=False), "AB3F9Q", ["Ab3F9q"])

    assert session.outcome is AttemptOutcome.SUCCESS
    assert session.responses == ["ab3f9q"]
    assert events[1].kind == "answer"
    assert events[1].response == "Ab3F9q"


def test_engine_case_sensitive_rejects_wrong_case() -> None:
    session, _, _, _ = _run_engine(_options(case_sensitive=True), "AB3F9Q", ["ab3f9q"])

    assert session.outcome is AttemptOutcome.EXHAUSTED


def test_session_cannot_finish_twice() -> None:
    session = AttemptSession.start(2)
    session.finish(AttemptOutcome.SUCCESS)

    with pytest.raises(RuntimeError):
        session.finish(AttemptOutcome.TIMEOUT)


def test_session_store_rejects_duplicate_claims() -> None:
    async def run() -> None:
        store = CaptchaSessionStore()
        first = AttemptSession.start(1)

        assert await store.claim(1, 2, first) is True
        assert await store.claim(1, 2, AttemptSession.start(1)) is False

        await store.remove(1, 2)
        assert await store.claim(1, 2, AttemptSession.start(1)) is True

    asyncio.run(run())


def test_event_registry_dispatches_sync_and_async_listeners() -> None:
    received: list[str] = []

    async def async_listener(event: CaptchaEvent) -> None:
        received.append(f"async:{event.kind}")

    def failing_listener(event: CaptchaEvent) -> None:
        raise RuntimeError("boom")

    registry = CaptchaEventRegistry({"success": [failing_listener, async_listener]})
    registry.add_listener("*", lambda event: received.append(f"any:{event.kind}"))

    event = CaptchaEvent(
        kind="success",
        member=DummyMember(),
        responses=("abc",),
        attempts=1,
        captcha_text="abc",
        options=_options(),
    )
    asyncio.run(registry.dispatch(event))

    assert received == ["async:success", "any:success"]

    registry.remove_listener("success", async_listener)
    assert async_listener not in registry.listeners("success")


def test_event_registry_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        CaptchaEventRegistry().add_listener("solved", lambda event: None)


def test_challenge_coerce_validates_payload() -> None:
    assert CaptchaChallenge.coerce({"image": b"data", "text": "abc"}) == CaptchaChallenge(b"data", "abc")
    assert CaptchaChallenge.coerce({"image": b"", "text": "abc"}) is None
    assert CaptchaChallenge.coerce({"image": b"data", "text": ""}) is None
    assert CaptchaChallenge.coerce({"image": "not-bytes", "text": "abc"}) is None
    assert CaptchaChallenge.coerce(object()) is None


def test_generate_captcha_produces_png_and_expected_alphabet() -> None:
    challenge = generate_captcha(6, rng=random.Random(1234))

    assert len(challenge.text) == 6
    assert set(challenge.text) <= set(ALPHABET)
    with Image.open(io.BytesIO(challenge.image)) as image:
        assert image.format == "PNG"
        assert image.size == (280, 90)


def test_generate_captcha_honours_exclusions() -> None:
    for seed in range(5):
        challenge = generate_captcha(12, UPPERCASE, rng=random.Random(seed))
        assert challenge.text == challenge.text.lower()
        assert not set(challenge.text) & set(UPPERCASE)


def test_generate_captcha_rejects_empty_alphabet() -> None:
    with pytest.raises(ValueError):
        generate_captcha(6, ALPHABET)
