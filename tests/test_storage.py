import json
import logging

import pytest

from conftest import make_record

from giveaway_bot.errors import StorageFailure
from giveaway_bot.storage import GiveawayStorage


@pytest.mark.asyncio
async def test_missing_snapshot_loads_empty(storage):
    assert await storage.load_all() == {}


@pytest.mark.asyncio
async def test_empty_snapshot_loads_empty(storage):
    storage.path.write_text("   ", encoding="utf-8")
    assert await storage.load_all() == {}


@pytest.mark.asyncio
async def test_corrupt_snapshot_loads_empty_and_logs(storage, caplog):
    storage.path.write_text("{not json", encoding="utf-8")
    with caplog.at_level(logging.ERROR, logger="giveaway_bot.storage"):
        assert await storage.load_all() == {}
    assert "corrupt" in caplog.text


@pytest.mark.asyncio
async def test_save_then_load_restores_records(storage):
    first = make_record("1", entrants=["10", "11"])
    second = make_record("2", ended=True)
    await storage.save_all({first.id: first, second.id: second})

    loaded = await storage.load_all()

    assert set(loaded) == {"1", "2"}
    assert loaded["1"].entrants == ["10", "11"]
    assert loaded["2"].ended is True


@pytest.mark.asyncio
async def test_save_replaces_whole_snapshot_without_leaving_temp_file(storage):
    record = make_record("1")
    await storage.save_all({record.id: record})
    await storage.save_all({})

    assert not storage.tmp_path.exists()
    payload = json.loads(storage.path.read_text(encoding="utf-8"))
    assert payload == {"giveaways": {}}


@pytest.mark.asyncio
async def test_legacy_list_snapshot_is_keyed_by_id(storage):
    storage.path.write_text(
        json.dumps([make_record("7").to_payload(), make_record("8").to_payload()]),
        encoding="utf-8",
    )
    loaded = await storage.load_all()
    assert sorted(loaded) == ["7", "8"]


@pytest.mark.asyncio
async def test_undecodable_entries_are_skipped(storage):
    good = make_record("7").to_payload()
    storage.path.write_text(
        json.dumps({"giveaways": {"7": good, "8": {"id": "8"}}}), encoding="utf-8"
    )
    loaded = await storage.load_all()
    assert list(loaded) == ["7"]


@pytest.mark.asyncio
async def test_write_failure_raises_storage_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    storage = GiveawayStorage(blocker / "giveaways.json")
    record = make_record("1")

    with pytest.raises(StorageFailure):
        await storage.save_all({record.id: record})


@pytest.mark.asyncio
async def test_out_of_range_record_is_skipped_next_to_good_one(storage, caplog):
    good = make_record("1").to_payload()
    bad = make_record("2").to_payload()
    bad["end_at"] = 10**20
    storage.path.write_text(json.dumps({"giveaways": {"1": good, "2": bad}}), encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="giveaway_bot.storage"):
        loaded = await storage.load_all()

    assert list(loaded) == ["1"]
    assert "Skipping undecodable giveaway entry" in caplog.text


@pytest.mark.asyncio
async def test_non_utf8_snapshot_is_set_aside(storage):
    storage.path.write_bytes(b"\xff\xfe\x00garbage")

    assert await storage.load_all() == {}

    backup = storage.path.with_name(storage.path.name + ".bak")
    assert backup.read_bytes() == b"\xff\xfe\x00garbage"
    assert not storage.path.exists()


@pytest.mark.asyncio
async def test_corrupt_snapshot_survives_next_save(storage):
    storage.path.write_text("{not json", encoding="utf-8")
    assert await storage.load_all() == {}

    record = make_record("1")
    await storage.save_all({record.id: record})

    backup = storage.path.with_name(storage.path.name + ".bak")
    assert backup.read_text(encoding="utf-8") == "{not json"
    assert list(await storage.load_all()) == ["1"]
