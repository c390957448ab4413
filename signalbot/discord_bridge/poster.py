"""
Webhook poster identity for a Discord channel.

Signals and the summary are posted through a bot-owned webhook so they show
up under the brand name instead of the bot account. The webhook is looked up
by name on first use and created when missing.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import discord

from signalbot.errors import ExternalPostError, MessageNotFoundError
from signalbot.journal.models import MessageRef

logger = logging.getLogger(__name__)


class WebhookPoster:
    """Implements the ``Poster`` contract used by ``SignalDesk``."""

    def __init__(self, client: discord.Client, channel_id: int, name: str):
        self._client = client
        self.channel_id = channel_id
        self.name = name
        self._webhook: Optional[discord.Webhook] = None

    async def _resolve_channel(self) -> discord.TextChannel:
        channel = self._client.get_channel(self.channel_id)
        if channel is None:
            channel = await self._client.fetch_channel(self.channel_id)
        return channel

    async def ensure_webhook(self) -> discord.Webhook:
        """Find our named webhook in the channel, creating it if needed."""
        if self._webhook is not None:
            return self._webhook
        try:
            channel = await self._resolve_channel()
            for hook in await channel.webhooks():
                if hook.name == self.name and hook.token:
                    self._webhook = hook
                    break
            else:
                self._webhook = await channel.create_webhook(name=self.name)
                logger.info(f"Created webhook '{self.name}' in channel {self.channel_id}")
        except discord.HTTPException as exc:
            raise ExternalPostError(
                f"Cannot set up webhook in channel {self.channel_id}: {exc}"
            ) from exc
        return self._webhook

    async def send(self, text: str, mentions: Iterable[str] = ()) -> MessageRef:
        webhook = await self.ensure_webhook()
        allowed = discord.AllowedMentions(
            everyone=False,
            users=False,
            roles=[discord.Object(id=int(rid)) for rid in mentions],
        )
        try:
            msg = await webhook.send(
                content=text,
                username=self.name,
                allowed_mentions=allowed,
                wait=True,
            )
        except discord.HTTPException as exc:
            raise ExternalPostError(f"Send to channel {self.channel_id} failed: {exc}") from exc
        return MessageRef(message_id=msg.id, jump_url=msg.jump_url)

    async def edit(self, message_id: int, text: str) -> None:
        webhook = await self.ensure_webhook()
        try:
            await webhook.edit_message(
                message_id,
                content=text,
                allowed_mentions=discord.AllowedMentions.none(),
            )
        except discord.NotFound as exc:
            raise MessageNotFoundError(f"Message {message_id} no longer exists") from exc
        except discord.HTTPException as exc:
            raise ExternalPostError(f"Edit of message {message_id} failed: {exc}") from exc

    async def delete(self, message_id: int) -> None:
        webhook = await self.ensure_webhook()
        try:
            await webhook.delete_message(message_id)
        except discord.NotFound:
            logger.info(f"Message {message_id} already gone")
        except discord.HTTPException as exc:
            raise ExternalPostError(f"Delete of message {message_id} failed: {exc}") from exc
