from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from modules.captcha.config import CaptchaOptions

_logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(slots=True)
class RuntimeConfig:
    token: str
    log_level: str
    log_cog_loads: bool
    captcha: CaptchaOptions


def load_runtime_config() -> RuntimeConfig:
    """Read runtime settings; raises ``CaptchaConfigError`` on invalid captcha options."""

    load_dotenv()

    token = os.getenv("DISCORD_TOKEN", "")
    log_level = os.getenv("LOG_LEVEL", "WARNING").upper()
    log_cog_loads = os.getenv("LOG_COG_LOADS", "0").lower() in TRUE_VALUES
    captcha = CaptchaOptions.from_env()
    _logger.debug("Captcha options resolved: %s", captcha)

    return RuntimeConfig(
        token=token,
        log_level=log_level,
        log_cog_loads=log_cog_loads,
        captcha=captcha,
    )
