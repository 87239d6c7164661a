from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
import logging
import os
from typing import Any, Mapping

import discord
from dotenv import load_dotenv

from .models import CaptchaConfigError

__all__ = ["CaptchaOptions"]

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_logger = logging.getLogger(__name__)

# Option names as they appear in user-facing configuration.
_OPTION_ALIASES: dict[str, str] = {
    "roleID": "role_id",
    "channelID": "channel_id",
    "sendToTextChannel": "send_to_text_channel",
    "addRoleOnSuccess": "add_role_on_success",
    "kickOnFailure": "kick_on_failure",
    "kickOnTimeout": "kick_on_timeout",
    "caseSensitive": "case_sensitive",
    "attempts": "attempts",
    "timeout": "timeout",
    "showAttemptCount": "show_attempt_count",
    "customPromptEmbed": "custom_prompt_embed",
    "customSuccessEmbed": "custom_success_embed",
    "customFailureEmbed": "custom_failure_embed",
}


@dataclass(frozen=True, slots=True)
class CaptchaOptions:
    """Validated, immutable options for presenting a captcha."""

    role_id: int | None = None
    channel_id: int | None = None
    send_to_text_channel: bool = False
    add_role_on_success: bool = True
    kick_on_failure: bool = True
    case_sensitive: bool = True
    attempts: int = 1
    timeout: int = 60000
    show_attempt_count: bool = True
    custom_prompt_embed: discord.Embed | None = field(default=None, compare=False)
    custom_success_embed: discord.Embed | None = field(default=None, compare=False)
    custom_failure_embed: discord.Embed | None = field(default=None, compare=False)
    # None follows ``kick_on_failure``.
    kick_on_timeout: bool | None = None

    def __post_init__(self) -> None:
        if self.send_to_text_channel and not self.channel_id:
            raise CaptchaConfigError(
                'Option "sendToTextChannel" was set to true, but "channelID" was not provided.'
            )
        if self.add_role_on_success and not self.role_id:
            raise CaptchaConfigError(
                'Option "addRoleOnSuccess" was set to true, but "roleID" was not provided.'
            )
        if not isinstance(self.attempts, int) or isinstance(self.attempts, bool) or self.attempts < 1:
            raise CaptchaConfigError('Option "attempts" must be greater than 0.')
        if not isinstance(self.timeout, int) or isinstance(self.timeout, bool) or self.timeout < 1:
            raise CaptchaConfigError('Option "timeout" must be greater than 0.')

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000

    @property
    def kicks_on_timeout(self) -> bool:
        if self.kick_on_timeout is None:
            return self.kick_on_failure
        return self.kick_on_timeout

    def merged(self, **overrides: Any) -> "CaptchaOptions":
        """Return a copy with *overrides* applied; the result is re-validated."""

        if not overrides:
            return self
        return dataclasses.replace(self, **_normalise_keys(overrides))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CaptchaOptions":
        return cls(**_normalise_keys(data))

    @classmethod
    def from_env(cls) -> "CaptchaOptions":
        load_dotenv()

        return cls(
            role_id=_coerce_snowflake(os.getenv("CAPTCHA_ROLE_ID"), name="CAPTCHA_ROLE_ID"),
            channel_id=_coerce_snowflake(os.getenv("CAPTCHA_CHANNEL_ID"), name="CAPTCHA_CHANNEL_ID"),
            send_to_text_channel=_parse_bool(os.getenv("CAPTCHA_SEND_TO_TEXT_CHANNEL"), default=False),
            add_role_on_success=_parse_bool(os.getenv("CAPTCHA_ADD_ROLE_ON_SUCCESS"), default=True),
            kick_on_failure=_parse_bool(os.getenv("CAPTCHA_KICK_ON_FAILURE"), default=True),
            kick_on_timeout=_parse_optional_bool(os.getenv("CAPTCHA_KICK_ON_TIMEOUT")),
            case_sensitive=_parse_bool(os.getenv("CAPTCHA_CASE_SENSITIVE"), default=True),
            attempts=_parse_int(os.getenv("CAPTCHA_ATTEMPTS"), default=1, name="CAPTCHA_ATTEMPTS"),
            timeout=_parse_int(os.getenv("CAPTCHA_TIMEOUT_MS"), default=60000, name="CAPTCHA_TIMEOUT_MS"),
            show_attempt_count=_parse_bool(os.getenv("CAPTCHA_SHOW_ATTEMPT_COUNT"), default=True),
        )


def _normalise_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    known = {f.name for f in dataclasses.fields(CaptchaOptions)}
    values: dict[str, Any] = {}
    for key, value in data.items():
        name = _OPTION_ALIASES.get(key, key)
        if name not in known:
            raise CaptchaConfigError(f"Unknown captcha option: {key}")
        if name in ("role_id", "channel_id"):
            value = _coerce_snowflake(value, name=key)
        values[name] = value
    return values


def _coerce_snowflake(value: Any, *, name: str) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.startswith("<#") or text.startswith("<@&"):
        text = text.lstrip("<#@&").rstrip(">")
    try:
        return int(text)
    except ValueError:
        raise CaptchaConfigError(f"{name} must be a Discord ID, got {value!r}") from None


def _parse_bool(raw: str | None, *, default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _parse_optional_bool(raw: str | None) -> bool | None:
    if raw is None:
        return None
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def _parse_int(raw: str | None, *, default: int, name: str) -> int:
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        _logger.warning("Invalid %s=%s; using %s", name, raw, default)
        return default
