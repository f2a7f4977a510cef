"""Pytest configuration and fixtures."""

import os
import sys

import pytest
from unittest.mock import Mock, AsyncMock, patch

from apscheduler.schedulers.asyncio import AsyncIOScheduler

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.adherence.dispatcher import AlertDispatcher
from domains.adherence.store import InMemoryScheduleStore


@pytest.fixture
def mock_discord_bot():
    """Create a mock Discord bot."""
    bot = Mock()
    bot.get_channel = Mock(return_value=Mock(
        send=AsyncMock(),
        typing=Mock(return_value=AsyncMock())
    ))
    bot.fetch_channel = AsyncMock()
    bot.user = Mock(name="TestBot#1234")
    return bot


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx client."""
    with patch('httpx.AsyncClient') as mock:
        client = AsyncMock()
        mock.return_value.__aenter__.return_value = client
        yield client


@pytest.fixture
def alert_channel():
    """Alert channel whose platform calls are all AsyncMocks."""
    channel = Mock()
    channel.request_permission = AsyncMock(return_value=True)
    channel.show = AsyncMock()
    channel.toast = AsyncMock()
    channel.vibrate = AsyncMock()
    return channel


@pytest.fixture
def dispatcher(alert_channel):
    """Dispatcher with notification permission already granted."""
    d = AlertDispatcher(alert_channel)
    d.permission = True
    return d


@pytest.fixture
def store():
    return InMemoryScheduleStore()


@pytest.fixture
def aps_scheduler():
    """APScheduler instance that is never started (jobs stay pending)."""
    return AsyncIOScheduler()
