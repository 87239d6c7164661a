from __future__ import annotations

import logging

import discord
from discord.ext import commands

from modules.captcha.config import CaptchaOptions

_logger = logging.getLogger(__name__)

EXTENSIONS = ("cogs.captcha",)


class CaptchaBot(commands.Bot):
    def __init__(self, *, captcha_options: CaptchaOptions, log_cog_loads: bool = False) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.message_content = True
        intents.dm_messages = True

        super().__init__(
            command_prefix=lambda _, __: [],
            intents=intents,
            help_command=None,
        )

        self.captcha_options = captcha_options
        self._log_cog_loads = log_cog_loads

    async def setup_hook(self) -> None:
        for extension in EXTENSIONS:
            await self.load_extension(extension)
            if self._log_cog_loads:
                print(f"[COG] Loaded {extension}")
        try:
            synced = await self.tree.sync()
        except discord.HTTPException:
            _logger.exception("Command tree sync failed")
        else:
            _logger.info("Synced %s application command(s)", len(synced))

    async def on_ready(self) -> None:
        _logger.info("Logged in as %s (%s)", self.user, getattr(self.user, "id", None))
