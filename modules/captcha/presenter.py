from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

import discord
from discord.ext import commands

from .config import CaptchaOptions
from .delivery import CaptchaDestination, resolve_destination
from .embeds import (
    build_captcha_file,
    build_failure_embed,
    build_prompt_embed,
    build_success_embed,
)
from .engine import AttemptEngine
from .events import CaptchaEventListener, CaptchaEventRegistry
from .generator import UPPERCASE, generate_captcha
from .models import AttemptOutcome, CaptchaChallenge, CaptchaDeliveryError
from .sessions import AttemptSession, CaptchaSessionStore

__all__ = ["CaptchaPresenter"]

_logger = logging.getLogger(__name__)

CHALLENGE_LENGTH = 6
NOTICE_DELETE_AFTER = 3.0
KICK_REASON = "Failed to Pass CAPTCHA"
ROLE_REASON = "Passed CAPTCHA verification"

ChallengeGenerator = Callable[[int, str], CaptchaChallenge]
DestinationResolver = Callable[..., Awaitable[CaptchaDestination]]


class CaptchaPresenter:
    """Present image captchas to guild members and act on the outcome."""

    def __init__(
        self,
        bot: commands.Bot,
        options: CaptchaOptions,
        *,
        generator: ChallengeGenerator = generate_captcha,
        resolver: DestinationResolver = resolve_destination,
        listeners: Mapping[str, CaptchaEventListener | list[CaptchaEventListener]] | None = None,
    ) -> None:
        self.bot = bot
        self.options = options
        self.events = CaptchaEventRegistry(listeners)
        self._generator = generator
        self._resolver = resolver
        self._sessions = CaptchaSessionStore()
        self._tasks: set[asyncio.Task[AttemptSession | None]] = set()

    def add_listener(self, kind: str, listener: CaptchaEventListener) -> None:
        self.events.add_listener(kind, listener)

    def remove_listener(self, kind: str, listener: CaptchaEventListener) -> None:
        self.events.remove_listener(kind, listener)

    async def present(self, member: discord.Member | None, custom_challenge: Any = None) -> bool:
        """Deliver a captcha to *member* and start waiting for answers.

        Returns whether the captcha was delivered; the outcome is reported to
        the registered listeners once the member answers or time runs out.
        """

        if member is None:
            _logger.debug("Captcha presentation skipped: no member provided")
            return False

        if custom_challenge is not None:
            challenge = CaptchaChallenge.coerce(custom_challenge)
            if challenge is None:
                _logger.warning("Rejected malformed custom captcha for member %s", member.id)
                return False
        else:
            excluded = "" if self.options.case_sensitive else UPPERCASE
            challenge = self._generator(CHALLENGE_LENGTH, excluded)

        session = AttemptSession.start(self.options.attempts)
        if not await self._sessions.claim(member.guild.id, member.id, session):
            _logger.info("Member %s already has a captcha in progress in guild %s", member.id, member.guild.id)
            return False

        try:
            delivered = await self._deliver_prompt(member, challenge, session)
        except BaseException:
            await self._sessions.remove(member.guild.id, member.id)
            raise
        if delivered is None:
            await self._sessions.remove(member.guild.id, member.id)
            return False

        destination, prompt = delivered
        task = asyncio.create_task(
            self._run_session(member, challenge, session, destination, prompt),
            name=f"captcha:{member.guild.id}:{member.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._session_done)
        return True

    def _session_done(self, task: asyncio.Task[AttemptSession | None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        try:
            task.result()
        except Exception:
            _logger.exception("Captcha session %s failed", task.get_name())

    async def wait_closed(self) -> None:
        """Wait until every presentation in flight has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_closed()

    async def _deliver_prompt(
        self,
        member: discord.Member,
        challenge: CaptchaChallenge,
        session: AttemptSession,
    ) -> tuple[CaptchaDestination, discord.Message] | None:
        embed = build_prompt_embed(member, self.options, session.attempts_remaining)

        try:
            destination = await self._resolver(self.bot, self.options, member)
            prompt = await destination.send(embed=embed, file=build_captcha_file(challenge.image))
            return destination, prompt
        except CaptchaDeliveryError as exc:
            if not self.options.channel_id or self.options.send_to_text_channel:
                _logger.warning(
                    "Could not deliver captcha to member %s in guild %s (%s); "
                    "configure a captcha channel ID to fall back to a text channel.",
                    member.id,
                    member.guild.id,
                    exc,
                )
                return None
            _logger.info(
                "Direct message captcha rejected for member %s (%s); falling back to channel %s",
                member.id,
                exc,
                self.options.channel_id,
            )

        try:
            destination = await self._resolver(self.bot, self.options, member, fallback=True)
            prompt = await destination.send(embed=embed, file=build_captcha_file(challenge.image))
        except CaptchaDeliveryError as exc:
            _logger.warning(
                "Could not deliver captcha to member %s via fallback channel %s: %s",
                member.id,
                self.options.channel_id,
                exc,
            )
            return None
        return destination, prompt

    async def _run_session(
        self,
        member: discord.Member,
        challenge: CaptchaChallenge,
        session: AttemptSession,
        destination: CaptchaDestination,
        prompt: discord.Message,
    ) -> AttemptSession:
        current_prompt = prompt

        async def reprompt(state: AttemptSession) -> None:
            nonlocal current_prompt
            embed = build_prompt_embed(member, self.options, state.attempts_remaining)
            if destination.supports_cleanup:
                if self.options.show_attempt_count:
                    await destination.edit(current_prompt, embed=embed)
                return
            try:
                current_prompt = await destination.send(embed=embed, file=build_captcha_file(challenge.image))
            except CaptchaDeliveryError:
                _logger.warning("Failed to resend captcha prompt to member %s", member.id)

        try:
            engine = AttemptEngine(self.options, challenge, self.events)
            await engine.run(member, destination, session=session, reprompt=reprompt)
            if session.outcome is AttemptOutcome.SUCCESS:
                await self._handle_success(member, destination, current_prompt)
            else:
                await self._handle_failure(member, challenge, session, destination, current_prompt)
        finally:
            await self._sessions.remove(member.guild.id, member.id)
        return session

    async def _handle_success(
        self,
        member: discord.Member,
        destination: CaptchaDestination,
        prompt: discord.Message,
    ) -> None:
        if self.options.add_role_on_success and self.options.role_id:
            await self._grant_role(member, self.options.role_id)
        await self._announce(member, destination, prompt, build_success_embed(member, self.options))

    async def _handle_failure(
        self,
        member: discord.Member,
        challenge: CaptchaChallenge,
        session: AttemptSession,
        destination: CaptchaDestination,
        prompt: discord.Message,
    ) -> None:
        embed = build_failure_embed(member, self.options, challenge.text)
        await self._announce(member, destination, prompt, embed)

        if session.outcome is AttemptOutcome.TIMEOUT:
            should_kick = self.options.kicks_on_timeout
        else:
            should_kick = self.options.kick_on_failure
        if should_kick:
            await self._kick(member)

    async def _announce(
        self,
        member: discord.Member,
        destination: CaptchaDestination,
        prompt: discord.Message,
        embed: discord.Embed,
    ) -> None:
        """Remove the prompt and post the result embed."""

        try:
            await destination.delete(prompt)
            await destination.send(embed=embed, delete_after=NOTICE_DELETE_AFTER)
        except CaptchaDeliveryError as exc:
            _logger.warning("Failed to send captcha result to member %s: %s", member.id, exc)
        except Exception:
            _logger.exception("Unexpected error while sending captcha result to member %s", member.id)

    async def _grant_role(self, member: discord.Member, role_id: int) -> None:
        role = member.guild.get_role(role_id) or discord.Object(id=role_id)
        try:
            await member.add_roles(role, reason=ROLE_REASON)
        except discord.Forbidden:
            _logger.warning(
                "Missing permissions to assign captcha role %s in guild %s for user %s",
                role_id,
                member.guild.id,
                member.id,
            )
        except discord.HTTPException:
            _logger.exception(
                "Failed to assign captcha role %s in guild %s for user %s",
                role_id,
                member.guild.id,
                member.id,
            )

    async def _kick(self, member: discord.Member) -> None:
        try:
            await member.kick(reason=KICK_REASON)
        except discord.Forbidden:
            _logger.warning(
                "Missing permissions to kick user %s from guild %s after failed captcha",
                member.id,
                member.guild.id,
            )
        except discord.HTTPException:
            _logger.exception("Failed to kick user %s from guild %s after failed captcha", member.id, member.guild.id)
