"""Shared fixtures: a throwaway SQLite database, a controllable clock and fake collaborators."""

import itertools
import random
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from duel_bot.database.database import Database
from duel_bot.database.models import ActiveDuel, Duel, GuildConfig, Vote
from duel_bot.services.duel_lifecycle import DuelLifecycleManager
from duel_bot.utils.exceptions import CollaboratorUnavailableError

GUILD_ID = 4242
DUEL_CHANNEL_ID = 9001

_storage_ids = itertools.count(1)


class FakeClock:
    """Naive UTC clock that only moves when a test says so."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakePresenter:
    def __init__(self):
        self.openings = []
        self.results = []
        self.fail = False
        self._next_message_id = 5000

    async def announce_duel(self, config, opening):
        if self.fail:
            raise CollaboratorUnavailableError("post duel", "discord is down")
        self.openings.append(opening)
        self._next_message_id += 1
        return self._next_message_id

    async def announce_result(self, config, result, message_id):
        if self.fail:
            raise CollaboratorUnavailableError("post result", "discord is down")
        self.results.append((result, message_id))


class FakeStorage:
    def __init__(self):
        self.deleted = []
        self.broken = set()

    async def get_url(self, storage_key: str) -> str:
        return f"https://cdn.example/{storage_key}.png"

    async def delete(self, storage_key: str) -> None:
        if storage_key in self.broken:
            raise CollaboratorUnavailableError("delete image message", "missing access", transient=False)
        self.deleted.append(storage_key)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path}/test.db")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest_asyncio.fixture
async def lifecycle(db, clock, presenter):
    manager = DuelLifecycleManager(db, presenter=presenter, clock=clock, rng=random.Random(7))
    yield manager
    await manager.shutdown()


@pytest.fixture
def make_guild(db):
    async def _make_guild(guild_id: int = GUILD_ID, **overrides) -> GuildConfig:
        values = {'duel_channel_id': DUEL_CHANNEL_ID}
        values.update(overrides)
        async with db.transaction() as session:
            session.add(GuildConfig(guild_id=guild_id, **values))
        async with db.get_session() as session:
            return await session.get(GuildConfig, guild_id)
    return _make_guild


@pytest.fixture
def make_images(db):
    async def _make_images(count: int, guild_id: int = GUILD_ID, uploaders=None, elos=None):
        images = []
        for index in range(count):
            uploader = uploaders[index] if uploaders else index + 1
            elo = elos[index] if elos else None
            storage_key = f"{DUEL_CHANNEL_ID}/{next(_storage_ids)}/{index}"
            images.append(await db.create_image(guild_id, uploader, storage_key, elo=elo))
        return images
    return _make_images


@pytest.fixture
def open_duel(db, clock):
    """Insert an open duel and its active-duel pointer directly"""
    async def _open_duel(image1, image2, guild_id: int = GUILD_ID, is_wildcard: bool = False,
                         duration: int = 3600) -> Duel:
        async with db.transaction() as session:
            duel = Duel(guild_id=guild_id, image1_id=image1.id, image2_id=image2.id,
                        is_wildcard=is_wildcard, started_at=clock())
            session.add(duel)
            await session.flush()
            session.add(ActiveDuel(guild_id=guild_id, duel_id=duel.id, image1_id=image1.id,
                                   image2_id=image2.id, ends_at=clock() + timedelta(seconds=duration)))
        return duel
    return _open_duel


@pytest.fixture
def add_votes(db):
    """Write votes straight into the ledger table: {voter_id: image_id}"""
    async def _add_votes(duel_id: int, votes):
        async with db.transaction() as session:
            for voter_id, image_id in votes.items():
                session.add(Vote(duel_id=duel_id, user_id=voter_id, image_id=image_id))
    return _add_votes
