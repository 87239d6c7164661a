from __future__ import annotations

import asyncio
import logging
import sys
import time

from modules.captcha import CaptchaConfigError
from modules.core import configure_logging, load_runtime_config
from modules.core.captcha_bot import CaptchaBot

print(f"[BOOT] Starting Captcha Gate Bot at {time.strftime('%X')}")

async def _main() -> int:
    print("[TRACE] Loading runtime config...")
    try:
        config = load_runtime_config()
    except CaptchaConfigError as exc:
        print(f"[FATAL] Invalid captcha configuration: {exc}")
        return 1
    print("[TRACE] Runtime config loaded")
    configure_logging(config.log_level)
    print(f"[TRACE] Logging configured at level {config.log_level}")
    logger = logging.getLogger("captcha.startup")
    logger.info("Log level resolved to %s", config.log_level)
    logger.info(
        "Captcha settings: attempts=%s timeout=%sms case_sensitive=%s text_channel=%s kick_on_failure=%s",
        config.captcha.attempts,
        config.captcha.timeout,
        config.captcha.case_sensitive,
        config.captcha.send_to_text_channel,
        config.captcha.kick_on_failure,
    )

    if not config.token:
        print("[FATAL] DISCORD_TOKEN is not set. Exiting.")
        return 1

    bot = CaptchaBot(captcha_options=config.captcha, log_cog_loads=config.log_cog_loads)
    try:
        await bot.start(config.token)
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        logger.exception("[FATAL] Bot crashed: %s", exc)
        return 1
    finally:
        if not bot.is_closed():
            logger.info("Closing bot connection")
            print("[TRACE] Closing bot connection")
            try:
                await bot.close()
            except Exception:
                logger.exception("Failed to close bot cleanly")
    return 0

if __name__ == "__main__":
    sys.exit(asyncio.run(_main()))
