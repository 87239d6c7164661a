from __future__ import annotations

import io

import discord

from .config import CaptchaOptions

__all__ = [
    "CAPTCHA_FILENAME",
    "attempt_footer",
    "build_captcha_file",
    "build_failure_embed",
    "build_prompt_embed",
    "build_success_embed",
]

CAPTCHA_FILENAME = "captcha.png"


def _guild_icon(member: discord.Member) -> str | None:
    icon = getattr(member.guild, "icon", None)
    return icon.url if icon else None


def attempt_footer(options: CaptchaOptions, attempts_remaining: int) -> str:
    if options.attempts == 1:
        return "You have one attempt to solve the CAPTCHA."
    return f"Attempts Left: {attempts_remaining}"


def build_captcha_file(image: bytes) -> discord.File:
    return discord.File(io.BytesIO(image), filename=CAPTCHA_FILENAME)


def build_prompt_embed(
    member: discord.Member,
    options: CaptchaOptions,
    attempts_remaining: int,
) -> discord.Embed:
    """Render the captcha prompt, honouring a custom template when configured."""

    if options.custom_prompt_embed is not None:
        embed = options.custom_prompt_embed.copy()
    else:
        guild_name = member.guild.name
        embed = discord.Embed(
            title=f"Welcome to {guild_name}!",
            color=discord.Color.random(),
        )
        embed.add_field(
            name="I'm Not a Robot",
            value=(
                f"{member.mention}, to gain access to **{guild_name}**, please solve the CAPTCHA below!\n\n"
                "This is done to protect the server from raids consisting of spam bots."
            ),
            inline=False,
        )
        icon = _guild_icon(member)
        if icon:
            embed.set_thumbnail(url=icon)

    if options.show_attempt_count:
        embed.set_footer(text=attempt_footer(options, attempts_remaining))
    embed.set_image(url=f"attachment://{CAPTCHA_FILENAME}")
    return embed


def build_success_embed(member: discord.Member, options: CaptchaOptions) -> discord.Embed:
    if options.custom_success_embed is not None:
        return options.custom_success_embed.copy()

    embed = discord.Embed(
        title="✅ CAPTCHA Solved!",
        description=(
            f"{member.mention}, you completed the CAPTCHA successfully, "
            f"and you have been given access to **{member.guild.name}**!"
        ),
        color=discord.Color.green(),
        timestamp=discord.utils.utcnow(),
    )
    icon = _guild_icon(member)
    if icon:
        embed.set_thumbnail(url=icon)
    return embed


def build_failure_embed(member: discord.Member, options: CaptchaOptions, captcha_text: str) -> discord.Embed:
    if options.custom_failure_embed is not None:
        return options.custom_failure_embed.copy()

    embed = discord.Embed(
        title="❌ You Failed to Complete the CAPTCHA!",
        description=f"{member.mention}, you failed to solve the CAPTCHA!\n\nCAPTCHA Text: **{captcha_text}**",
        color=discord.Color.red(),
        timestamp=discord.utils.utcnow(),
    )
    icon = _guild_icon(member)
    if icon:
        embed.set_thumbnail(url=icon)
    return embed
