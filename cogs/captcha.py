from __future__ import annotations

import logging

import discord
from discord import app_commands, Interaction
from discord.ext import commands

from modules.captcha import CaptchaEvent, CaptchaOptions, CaptchaPresenter

_logger = logging.getLogger(__name__)


class CaptchaCog(commands.Cog):
    """Captcha verification flow for new guild members."""

    captcha_group = app_commands.Group(
        name="captcha",
        description="Manage captcha verification.",
        guild_only=True,
        default_permissions=discord.Permissions(manage_guild=True),
    )

    def __init__(self, bot: commands.Bot, options: CaptchaOptions | None = None):
        self.bot = bot
        if options is None:
            options = getattr(bot, "captcha_options", None) or CaptchaOptions.from_env()
        self.presenter = CaptchaPresenter(bot, options)
        self.presenter.add_listener("*", self._log_event)

    async def cog_unload(self) -> None:
        await self.presenter.close()

    @staticmethod
    def _log_event(event: CaptchaEvent) -> None:
        member = event.member
        if event.kind == "answer":
            _logger.info(
                "Captcha answer from %s in guild %s (attempt %s)",
                member.id,
                member.guild.id,
                event.attempts,
            )
            return
        _logger.info(
            "Captcha %s for %s in guild %s after %s attempt(s)",
            event.kind,
            member.id,
            member.guild.id,
            event.attempts,
        )

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot or member.guild is None:
            return
        await self.presenter.present(member)

    @captcha_group.command(name="present", description="Send the captcha to a member again.")
    @app_commands.describe(member="Member who should solve the captcha.")
    async def present_command(self, interaction: Interaction, member: discord.Member) -> None:
        if interaction.guild is None:
            await interaction.response.send_message(
                "This command can only be used in a server.", ephemeral=True
            )
            return
        if member.bot:
            await interaction.response.send_message("Bots cannot solve captchas.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)

        if await self.presenter.present(member):
            await interaction.followup.send(f"Captcha sent to {member.mention}.", ephemeral=True)
        else:
            await interaction.followup.send(
                f"Could not send a captcha to {member.mention}. They may already have one pending, "
                "or their direct messages are closed and no captcha channel is configured.",
                ephemeral=True,
            )


async def setup(bot: commands.Bot) -> None:
    cog = CaptchaCog(bot)
    await bot.add_cog(cog)
