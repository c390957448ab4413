"""
Shared fixtures: a config, JSON store in tmp_path, and fake posters that
record what would have been sent to Discord.
"""
from pathlib import Path

import pytest

from signalbot.config import BotConfig
from signalbot.errors import ExternalPostError, MessageNotFoundError
from signalbot.journal.models import MessageRef
from signalbot.journal.store import JsonSignalStore
from signalbot.service import SignalDesk

OWNER_ID = 111111111111111111
STRANGER_ID = 222222222222222222
ROLE_ID = 333333333333333333


class FakePoster:
    def __init__(self, first_id: int = 1000):
        self.sent = []      # (message_id, text, mentions)
        self.edits = []     # (message_id, text)
        self.deleted = []
        self.missing = set()
        self.fail_send = False
        self._next_id = first_id

    async def send(self, text, mentions=()):
        if self.fail_send:
            raise ExternalPostError("send failed")
        self._next_id += 1
        self.sent.append((self._next_id, text, list(mentions)))
        return MessageRef(
            message_id=self._next_id,
            jump_url=f"https://discord.com/channels/1/2/{self._next_id}",
        )

    async def edit(self, message_id, text):
        if message_id in self.missing:
            raise MessageNotFoundError(f"{message_id} gone")
        self.edits.append((message_id, text))

    async def delete(self, message_id):
        self.deleted.append(message_id)


@pytest.fixture
def config(tmp_path: Path) -> BotConfig:
    return BotConfig(
        token="test-token",
        owner_id=OWNER_ID,
        signals_channel_id=10,
        current_trades_channel_id=20,
        mention_role_id=ROLE_ID,
        brand_name="JV Trades",
        db_path=tmp_path / "signals.json",
    )


@pytest.fixture
def store(config: BotConfig) -> JsonSignalStore:
    return JsonSignalStore(config.db_path)


@pytest.fixture
def signals_poster() -> FakePoster:
    return FakePoster(first_id=1000)


@pytest.fixture
def summary_poster() -> FakePoster:
    return FakePoster(first_id=9000)


@pytest.fixture
def desk(config, store, signals_poster, summary_poster) -> SignalDesk:
    return SignalDesk(config, store, signals_poster, summary_poster)
