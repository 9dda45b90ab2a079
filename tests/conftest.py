from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from giveaway_bot.config import Config, PermissionsConfig
from giveaway_bot.giveaway_manager import GiveawayManager
from giveaway_bot.storage import GiveawayStore

MANAGER_ROLE_ID = 111111111111111111


@pytest.fixture
def config() -> Config:
    return Config(
        token="fake_token",
        application_id=123456789012345678,
        permissions=PermissionsConfig(manager_roles=[MANAGER_ROLE_ID]),
    )


@pytest_asyncio.fixture
async def store(tmp_path) -> GiveawayStore:
    store = GiveawayStore(tmp_path / "giveaways.sqlite")
    await store.initialize()
    return store


@pytest.fixture
def messenger() -> MagicMock:
    messenger = MagicMock()
    messenger.post_announcement = AsyncMock(return_value=999888777666555444)
    messenger.close_announcement = AsyncMock()
    messenger.send_notice = AsyncMock(return_value=True)
    messenger.notify_logger = AsyncMock()
    messenger.fetch_member = AsyncMock(return_value=None)
    messenger.fetch_user = AsyncMock(return_value=None)
    return messenger


@pytest_asyncio.fixture
async def manager(config, store, messenger):
    manager = GiveawayManager(config, store, messenger)
    yield manager
    manager.shutdown()
