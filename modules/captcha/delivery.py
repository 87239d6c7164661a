from __future__ import annotations

import asyncio
import logging
from typing import Any

import discord
from discord.ext import commands

from .config import CaptchaOptions
from .models import CaptchaDeliveryError, DestinationUnavailableError

__all__ = ["CaptchaDestination", "resolve_destination"]

_logger = logging.getLogger(__name__)


class CaptchaDestination:
    """Channel a captcha is delivered to, together with what it allows.

    Shared text channels support editing and deleting captcha messages; direct
    message channels only receive new messages.
    """

    def __init__(self, bot: commands.Bot, channel: discord.abc.Messageable, *, shared: bool) -> None:
        self._bot = bot
        self.channel = channel
        self.shared = shared

    @property
    def supports_cleanup(self) -> bool:
        return self.shared

    @property
    def channel_id(self) -> int | None:
        return getattr(self.channel, "id", None)

    async def send(
        self,
        *,
        embed: discord.Embed,
        file: discord.File | None = None,
        delete_after: float | None = None,
    ) -> discord.Message:
        kwargs: dict[str, Any] = {"embed": embed}
        if file is not None:
            kwargs["file"] = file
        if delete_after is not None and self.shared:
            kwargs["delete_after"] = delete_after
        try:
            return await self.channel.send(**kwargs)
        except discord.Forbidden as exc:
            raise CaptchaDeliveryError(
                f"Missing permission to send captcha to channel {self.channel_id}", status=exc.status
            ) from exc
        except discord.HTTPException as exc:
            raise CaptchaDeliveryError(
                f"Failed to send captcha to channel {self.channel_id}", status=exc.status
            ) from exc

    async def edit(self, message: discord.Message, *, embed: discord.Embed) -> None:
        if not self.shared:
            return
        try:
            await message.edit(embed=embed)
        except discord.HTTPException:
            _logger.warning("Failed to update captcha prompt %s in channel %s", message.id, self.channel_id)

    async def delete(self, message: discord.Message | None) -> None:
        if message is None or not self.shared:
            return
        try:
            await message.delete()
        except discord.NotFound:
            pass
        except discord.HTTPException:
            _logger.warning("Failed to delete captcha message %s in channel %s", message.id, self.channel_id)

    async def await_response(self, author_id: int, timeout: float) -> str | None:
        channel_id = self.channel_id

        def check(message: discord.Message) -> bool:
            return message.author.id == author_id and message.channel.id == channel_id

        try:
            message = await self._bot.wait_for("message", check=check, timeout=timeout)
        except asyncio.TimeoutError:
            return None

        await self.delete(message)
        return message.content


async def resolve_destination(
    bot: commands.Bot,
    options: CaptchaOptions,
    member: discord.Member,
    *,
    fallback: bool = False,
) -> CaptchaDestination:
    """Pick the channel a captcha for *member* is delivered to.

    The configured text channel is used when ``send_to_text_channel`` is set or
    when *fallback* is requested after direct messages were rejected.
    """

    if fallback or options.send_to_text_channel:
        if not options.channel_id:
            raise DestinationUnavailableError("No captcha text channel is configured.")
        channel = member.guild.get_channel(options.channel_id)
        if channel is None:
            try:
                channel = await bot.fetch_channel(options.channel_id)
            except discord.HTTPException as exc:
                raise DestinationUnavailableError(
                    f"Captcha channel {options.channel_id} is not accessible.", status=exc.status
                ) from exc
        if not isinstance(channel, discord.abc.Messageable):
            raise DestinationUnavailableError(f"Captcha channel {options.channel_id} is not a text channel.")
        return CaptchaDestination(bot, channel, shared=True)

    channel = member.dm_channel
    if channel is None:
        try:
            channel = await member.create_dm()
        except discord.HTTPException as exc:
            raise DestinationUnavailableError(
                f"Could not open a direct message channel with {member.id}.", status=exc.status
            ) from exc
    return CaptchaDestination(bot, channel, shared=False)
