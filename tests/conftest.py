"""Shared doubles for the giveaway engine tests."""

import asyncio
from datetime import UTC, datetime, timedelta
from random import Random

import pytest

from giveaway_bot.backend import RemoteEndResult, RemoteGiveaway
from giveaway_bot.engine import GiveawayEngine
from giveaway_bot.errors import PresentationFailure, RemoteCallFailure
from giveaway_bot.models import GiveawayRecord, Participant
from giveaway_bot.storage import GiveawayStorage

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class FakePresenter:
    def __init__(self):
        self.published = []
        self.refreshed = []
        self.closed = []
        self.announced = []
        self.logs = []
        self.names = {}
        self.fail_presentation = False
        self._next_id = 1000

    async def publish(self, spec, end_at):
        self._next_id += 1
        self.published.append((spec, end_at))
        return str(self._next_id)

    async def refresh(self, record, count):
        if self.fail_presentation:
            raise PresentationFailure("edit failed")
        self.refreshed.append((record.id, count))

    async def resolve(self, user_id):
        name = self.names.get(user_id)
        if name is None:
            return None
        return Participant(user_id=user_id, username=name, display_name=name.title())

    async def close_announcement(self, record, summary_url):
        if self.fail_presentation:
            raise PresentationFailure("edit failed")
        self.closed.append((record.id, summary_url))

    async def announce_winners(self, record, summary_url):
        if self.fail_presentation:
            raise PresentationFailure("send failed")
        self.announced.append((record.id, [w.user_id for w in record.winners], summary_url))

    async def notify_log(self, message, *, guild_id=None):
        self.logs.append(message)


class FakeBackend:
    def __init__(self):
        self.created = []
        self.joined = []
        self.ended = []
        self.create_result = RemoteGiveaway(giveaway_id="remote-1", summary_url="https://backend/summary/1")
        self.create_error = None
        self.join_count = None
        self.join_error = None
        self.end_result = RemoteEndResult()
        self.end_error = None
        self.closed = False

    async def create(self, **kwargs):
        self.created.append(kwargs)
        if self.create_error:
            raise self.create_error
        return self.create_result

    async def join(self, giveaway_id, participant):
        self.joined.append((giveaway_id, participant.user_id))
        if self.join_error:
            raise self.join_error
        return self.join_count

    async def end(self, giveaway_id):
        self.ended.append(giveaway_id)
        if self.end_error:
            raise self.end_error
        return self.end_result

    async def close(self):
        self.closed = True


class ManualSleep:
    """Sleep replacement that records delays and blocks until released."""

    def __init__(self):
        self.delays = []
        self.release = asyncio.Event()

    async def __call__(self, delay):
        self.delays.append(delay)
        await self.release.wait()


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def make_record(giveaway_id="555", **overrides):
    values = dict(
        id=giveaway_id,
        guild_id="1",
        channel_id="2",
        host_id="3",
        prize="Lifetime key",
        description="",
        winners_count=1,
        created_at=NOW - timedelta(minutes=5),
        end_at=NOW + timedelta(minutes=5),
    )
    values.update(overrides)
    return GiveawayRecord(**values)


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def storage(tmp_path):
    return GiveawayStorage(tmp_path / "giveaways.json")


@pytest.fixture
def remote_failure():
    return RemoteCallFailure("backend down")


@pytest.fixture
def make_engine(storage, presenter):
    def factory(**kwargs):
        kwargs.setdefault("clock", lambda: NOW)
        kwargs.setdefault("rng", Random(7))
        kwargs.setdefault("retry_delay", 0)
        return GiveawayEngine(storage, presenter, **kwargs)

    return factory
