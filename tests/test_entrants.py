import logging
from unittest.mock import AsyncMock

import pytest

from conftest import make_record

from giveaway_bot.entrants import EntrantTracker
from giveaway_bot.errors import NotFoundError
from giveaway_bot.models import Participant

ALICE = Participant(user_id="100", username="alice")
BOB = Participant(user_id="200", username="bob")


def build(presenter, backend=None, **record_overrides):
    record = make_record("1", **record_overrides)
    persist = AsyncMock()
    tracker = EntrantTracker({record.id: record}, persist, presenter, backend)
    return tracker, record, persist


@pytest.mark.asyncio
async def test_join_twice_is_idempotent(presenter):
    tracker, record, persist = build(presenter)

    assert await tracker.join("1", ALICE) == 1
    assert await tracker.join("1", ALICE) == 1

    assert record.entrants == ["100"]
    persist.assert_awaited_once()
    assert presenter.refreshed == [("1", 1)]


@pytest.mark.asyncio
async def test_leave_absent_participant_changes_nothing(presenter):
    tracker, record, persist = build(presenter, entrants=["100"])

    assert await tracker.leave("1", BOB) == 1

    assert record.entrants == ["100"]
    persist.assert_not_awaited()


@pytest.mark.asyncio
async def test_leave_removes_and_persists(presenter):
    tracker, record, persist = build(presenter, entrants=["100", "200"])

    assert await tracker.leave("1", BOB) == 1

    assert record.entrants == ["100"]
    persist.assert_awaited_once()


@pytest.mark.asyncio
async def test_ended_giveaway_ignores_join_and_leave(presenter):
    tracker, record, persist = build(presenter, entrants=["100"], ended=True)

    assert await tracker.join("1", BOB) == 1
    assert await tracker.leave("1", ALICE) == 1

    assert record.entrants == ["100"]
    persist.assert_not_awaited()
    assert presenter.refreshed == []


@pytest.mark.asyncio
async def test_unknown_giveaway_raises_not_found(presenter):
    tracker, _, _ = build(presenter)
    with pytest.raises(NotFoundError):
        await tracker.join("404", ALICE)


@pytest.mark.asyncio
async def test_remote_count_is_preferred(presenter, backend):
    backend.join_count = 42
    tracker, record, _ = build(presenter, backend, remote_giveaway_id="r-1")

    assert await tracker.join("1", ALICE) == 42

    assert backend.joined == [("r-1", "100")]
    assert record.entrants == ["100"]
    assert presenter.refreshed == [("1", 42)]


@pytest.mark.asyncio
async def test_remote_failure_falls_back_to_local_count(presenter, backend, remote_failure, caplog):
    backend.join_error = remote_failure
    tracker, record, persist = build(presenter, backend, remote_giveaway_id="r-1", entrants=["200"])

    with caplog.at_level(logging.WARNING, logger="giveaway_bot.entrants"):
        assert await tracker.join("1", ALICE) == 2

    assert record.entrants == ["200", "100"]
    persist.assert_awaited_once()
    assert "Remote join" in caplog.text


@pytest.mark.asyncio
async def test_local_only_giveaway_never_calls_backend(presenter, backend):
    tracker, _, _ = build(presenter, backend)
    await tracker.join("1", ALICE)
    assert backend.joined == []


@pytest.mark.asyncio
async def test_giveaway_closing_during_remote_join_drops_the_join(presenter, backend):
    tracker, record, persist = build(presenter, backend, remote_giveaway_id="r-1")

    async def close_while_joining(giveaway_id, participant):
        record.ended = True
        return 1

    backend.join = close_while_joining

    assert await tracker.join("1", ALICE) == 0
    assert record.entrants == []
    persist.assert_not_awaited()


@pytest.mark.asyncio
async def test_refresh_failure_does_not_fail_join(presenter):
    presenter.fail_presentation = True
    tracker, record, persist = build(presenter)

    assert await tracker.join("1", ALICE) == 1
    persist.assert_awaited_once()
