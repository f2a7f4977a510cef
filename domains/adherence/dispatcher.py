"""Deliver reminder alerts.

The dispatcher prefers a proper notification and falls back to a
short-lived toast plus a vibration cue when notifications are not
permitted. Permission is requested once, lazily, in the background so a
scheduler tick never waits on it.

Channels:
- DiscordAlertChannel: posts to the configured alert channel
- LogAlertChannel: headless; never grants notification permission
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import discord

from config import ALERT_CHANNEL_ID, ALERT_USER_ID
from logger import logger
from . import config


class AlertChannel(ABC):
    """Platform primitives the dispatcher builds on."""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for permission to show notifications."""

    @abstractmethod
    async def show(self, title: str, body: str, tag: Optional[str] = None) -> None:
        """Show a notification."""

    @abstractmethod
    async def toast(self, message: str, duration_ms: int) -> None:
        """Show a transient in-app message that dismisses itself."""

    @abstractmethod
    async def vibrate(self, ms: int) -> None:
        """Short device vibration cue, where supported."""


class DiscordAlertChannel(AlertChannel):
    """Alerts posted to a Discord channel.

    Permission means the bot can resolve the channel. Toasts are posted with
    ``delete_after`` so they disappear like an in-app message.
    """

    def __init__(self, bot: discord.Client, channel_id: int, user_id: Optional[int] = None):
        self.bot = bot
        self.channel_id = channel_id
        self.user_id = user_id
        self._channel = None

    async def _resolve(self):
        if self._channel is None:
            channel = self.bot.get_channel(self.channel_id)
            if not channel:
                channel = await self.bot.fetch_channel(self.channel_id)
            self._channel = channel
        return self._channel

    async def request_permission(self) -> bool:
        if not self.channel_id:
            return False
        try:
            return await self._resolve() is not None
        except discord.DiscordException as e:
            logger.warning(f"Alert channel {self.channel_id} unavailable: {e}")
            return False

    async def show(self, title: str, body: str, tag: Optional[str] = None) -> None:
        channel = await self._resolve()
        mention = f" <@{self.user_id}>" if self.user_id else ""
        await channel.send(f"**{title}**{mention}\n\n> {body}")

    async def toast(self, message: str, duration_ms: int) -> None:
        channel = await self._resolve()
        await channel.send(message, delete_after=duration_ms / 1000)

    async def vibrate(self, ms: int) -> None:
        # No device to buzz on Discord
        logger.debug(f"Vibration cue ({ms}ms) skipped on Discord")


class LogAlertChannel(AlertChannel):
    """Writes alerts to the log. Used when no Discord channel is configured."""

    async def request_permission(self) -> bool:
        return False

    async def show(self, title: str, body: str, tag: Optional[str] = None) -> None:
        logger.info(f"ALERT {title}: {body}")

    async def toast(self, message: str, duration_ms: int) -> None:
        logger.info(f"TOAST ({duration_ms}ms): {message}")

    async def vibrate(self, ms: int) -> None:
        logger.debug(f"VIBRATE {ms}ms")


def build_alert_channel(
    bot: discord.Client,
    channel_id: Optional[int] = None,
    user_id: Optional[int] = None
) -> AlertChannel:
    """Discord channel when one is configured, otherwise the log.

    Ids default to MEDMINDER_ALERT_CHANNEL_ID and MEDMINDER_USER_ID.
    """
    channel_id = ALERT_CHANNEL_ID if channel_id is None else channel_id
    user_id = ALERT_USER_ID if user_id is None else user_id
    if not channel_id:
        logger.warning("MEDMINDER_ALERT_CHANNEL_ID not set, alerts go to the log")
        return LogAlertChannel()
    return DiscordAlertChannel(bot, channel_id, user_id=user_id or None)


class AlertDispatcher:
    """Notification with toast fallback, never raising into the caller."""

    def __init__(
        self,
        channel: AlertChannel,
        toast_duration_ms: int = config.TOAST_DURATION_MS,
        vibrate_ms: int = config.VIBRATE_MS
    ):
        self.channel = channel
        self.toast_duration_ms = toast_duration_ms
        self.vibrate_ms = vibrate_ms
        self.permission: Optional[bool] = None
        self._permission_task: Optional[asyncio.Task] = None

    def request_permission_once(self) -> Optional[asyncio.Task]:
        """Start the permission request in the background (first call only)."""
        if self._permission_task is None and self.permission is None:
            self._permission_task = asyncio.create_task(self._request_permission())
        return self._permission_task

    async def _request_permission(self) -> bool:
        try:
            self.permission = bool(await self.channel.request_permission())
        except Exception as e:
            logger.warning(f"Notification permission request failed: {e}")
            self.permission = False
        logger.info(f"Notification permission {'granted' if self.permission else 'not granted'}")
        return self.permission

    async def notify(self, title: str, body: str, tag: Optional[str] = None) -> str:
        """Deliver an alert.

        Returns:
            "notification", "toast" or "failed" depending on the path taken
        """
        if self.permission is None:
            self.request_permission_once()

        if self.permission:
            try:
                await self.channel.show(title, body, tag)
                return "notification"
            except Exception as e:
                logger.warning(f"Notification failed for {tag or title}: {e}")

        try:
            await self.channel.toast(f"{title} · {body}", self.toast_duration_ms)
        except Exception as e:
            logger.error(f"Toast failed for {tag or title}: {e}")
            return "failed"

        try:
            await self.channel.vibrate(self.vibrate_ms)
        except Exception as e:
            logger.debug(f"Vibrate failed: {e}")
        return "toast"

    async def test_alert(self) -> str:
        """Manual check: ask for permission if needed, otherwise fire a sample alert."""
        if not self.permission:
            self._permission_task = None
            self.permission = None
            granted = await self.request_permission_once()
            message = "Notifications enabled" if granted else "Notifications blocked"
            await self.notify_toast(message)
            return message
        await self.notify("Test reminder", "This is what a reminder looks like", tag="test")
        return "Test alert sent"

    async def notify_toast(self, message: str) -> None:
        try:
            await self.channel.toast(message, self.toast_duration_ms)
        except Exception as e:
            logger.error(f"Toast failed: {e}")
