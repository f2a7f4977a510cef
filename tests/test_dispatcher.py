"""Tests for alert dispatch and its fallbacks."""

import asyncio

import discord
import pytest
from unittest.mock import AsyncMock, Mock, patch

from domains.adherence.dispatcher import (
    AlertDispatcher,
    DiscordAlertChannel,
    LogAlertChannel,
    build_alert_channel,
)


class TestAlertDispatcher:

    @pytest.mark.asyncio
    async def test_notification_when_permitted(self, dispatcher, alert_channel):
        result = await dispatcher.notify("Morning", "Scheduled for 09:00", tag="r1#09:00")

        assert result == "notification"
        alert_channel.show.assert_awaited_once_with("Morning", "Scheduled for 09:00", "r1#09:00")
        alert_channel.toast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_toast_and_vibrate_without_permission(self, alert_channel):
        d = AlertDispatcher(alert_channel)
        d.permission = False

        result = await d.notify("Morning", "Scheduled for 09:00")

        assert result == "toast"
        alert_channel.show.assert_not_awaited()
        alert_channel.toast.assert_awaited_once_with("Morning · Scheduled for 09:00", 5400)
        alert_channel.vibrate.assert_awaited_once_with(200)

    @pytest.mark.asyncio
    async def test_failed_notification_falls_back_to_toast(self, dispatcher, alert_channel):
        alert_channel.show.side_effect = RuntimeError("boom")

        assert await dispatcher.notify("Morning", "09:00") == "toast"
        alert_channel.toast.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_platform_failures_never_raise(self, dispatcher, alert_channel):
        alert_channel.show.side_effect = RuntimeError("boom")
        alert_channel.toast.side_effect = RuntimeError("also boom")

        assert await dispatcher.notify("Morning", "09:00") == "failed"

    @pytest.mark.asyncio
    async def test_permission_requested_once_lazily(self, alert_channel):
        d = AlertDispatcher(alert_channel)

        # First alert goes out as a toast while the request runs in the background
        assert await d.notify("A", "09:00") == "toast"
        await d.notify("B", "09:00")
        await d.request_permission_once()

        assert d.permission is True
        alert_channel.request_permission.assert_awaited_once()
        assert await d.notify("C", "09:00") == "notification"

    @pytest.mark.asyncio
    async def test_permission_error_counts_as_denied(self, alert_channel):
        alert_channel.request_permission.side_effect = RuntimeError("no api")
        d = AlertDispatcher(alert_channel)

        assert await d.request_permission_once() is False
        assert d.permission is False

    @pytest.mark.asyncio
    async def test_test_alert_reports_permission(self, alert_channel):
        alert_channel.request_permission.return_value = False
        d = AlertDispatcher(alert_channel)

        assert await d.test_alert() == "Notifications blocked"
        alert_channel.toast.assert_awaited_once_with("Notifications blocked", 5400)

    @pytest.mark.asyncio
    async def test_test_alert_sends_sample_when_permitted(self, dispatcher, alert_channel):
        assert await dispatcher.test_alert() == "Test alert sent"
        alert_channel.show.assert_awaited_once()


class TestDiscordAlertChannel:

    @pytest.mark.asyncio
    async def test_show_posts_to_channel(self, mock_discord_bot):
        channel = DiscordAlertChannel(mock_discord_bot, 123, user_id=42)

        await channel.show("Morning", "Scheduled for 09:00")

        sent = mock_discord_bot.get_channel.return_value.send.await_args.args[0]
        assert sent.startswith("**Morning** <@42>")
        assert "Scheduled for 09:00" in sent

    @pytest.mark.asyncio
    async def test_toast_deletes_itself(self, mock_discord_bot):
        channel = DiscordAlertChannel(mock_discord_bot, 123)

        await channel.toast("Morning · 09:00", 5400)

        mock_discord_bot.get_channel.return_value.send.assert_awaited_once_with(
            "Morning · 09:00", delete_after=5.4
        )

    @pytest.mark.asyncio
    async def test_permission_falls_back_to_fetch(self, mock_discord_bot):
        mock_discord_bot.get_channel = Mock(return_value=None)
        mock_discord_bot.fetch_channel = AsyncMock(return_value=Mock(send=AsyncMock()))
        channel = DiscordAlertChannel(mock_discord_bot, 123)

        assert await channel.request_permission() is True
        mock_discord_bot.fetch_channel.assert_awaited_once_with(123)

    @pytest.mark.asyncio
    async def test_permission_denied_when_channel_unreachable(self, mock_discord_bot):
        mock_discord_bot.get_channel = Mock(return_value=None)
        mock_discord_bot.fetch_channel = AsyncMock(side_effect=discord.DiscordException("forbidden"))
        channel = DiscordAlertChannel(mock_discord_bot, 123)

        assert await channel.request_permission() is False

    @pytest.mark.asyncio
    async def test_no_channel_configured(self, mock_discord_bot):
        assert await DiscordAlertChannel(mock_discord_bot, 0).request_permission() is False


class TestLogAlertChannel:

    @pytest.mark.asyncio
    async def test_always_uses_toast_path(self):
        d = AlertDispatcher(LogAlertChannel())
        d.request_permission_once()
        await asyncio.sleep(0)

        assert await d.notify("Morning", "09:00") == "toast"


class TestBuildAlertChannel:

    @pytest.mark.asyncio
    async def test_configured_user_is_mentioned(self, mock_discord_bot):
        with patch("domains.adherence.dispatcher.ALERT_CHANNEL_ID", 123), \
                patch("domains.adherence.dispatcher.ALERT_USER_ID", 42):
            channel = build_alert_channel(mock_discord_bot)

        assert isinstance(channel, DiscordAlertChannel)
        await channel.show("Morning", "Scheduled for 09:00")
        sent = mock_discord_bot.get_channel.return_value.send.await_args.args[0]
        assert "<@42>" in sent

    @pytest.mark.asyncio
    async def test_no_user_means_no_mention(self, mock_discord_bot):
        channel = build_alert_channel(mock_discord_bot, channel_id=123, user_id=0)

        await channel.show("Morning", "Scheduled for 09:00")

        sent = mock_discord_bot.get_channel.return_value.send.await_args.args[0]
        assert "<@" not in sent

    def test_log_channel_without_channel_id(self, mock_discord_bot):
        assert isinstance(build_alert_channel(mock_discord_bot, channel_id=0), LogAlertChannel)
