"""JSON snapshot persistence for giveaway records."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Mapping

from .errors import StorageFailure
from .models import GiveawayRecord

LOGGER = logging.getLogger(__name__)


class GiveawayStorage:
    """Async wrapper around a single JSON snapshot of every giveaway record.

    The whole mapping is rewritten on each save. Writes go to a sibling temp
    file that is then renamed over the snapshot, so readers only ever see a
    complete file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.tmp_path = path.with_name(path.name + ".tmp")
        self._lock = asyncio.Lock()

    async def load_all(self) -> Dict[str, GiveawayRecord]:
        """Load all records; a missing, empty or corrupt snapshot yields an empty mapping."""
        async with self._lock:
            if not self.path.exists():
                return {}
            try:
                raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            except UnicodeDecodeError:
                LOGGER.exception(
                    "Giveaway snapshot %s is not valid UTF-8; starting with no giveaways.",
                    self.path,
                )
                await asyncio.to_thread(self._set_aside)
                return {}
            except OSError:
                LOGGER.exception("Unable to read giveaway snapshot %s", self.path)
                return {}
            if not raw.strip():
                return {}
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                LOGGER.exception(
                    "Giveaway snapshot %s is corrupt; starting with no giveaways.", self.path
                )
                await asyncio.to_thread(self._set_aside)
                return {}
            return self._decode(payload)

    async def save_all(self, records: Mapping[str, GiveawayRecord]) -> None:
        """Persist the full mapping, replacing the previous snapshot atomically."""
        payload = {
            "giveaways": {
                giveaway_id: record.to_payload() for giveaway_id, record in records.items()
            }
        }
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_snapshot, payload)
            except (OSError, TypeError, ValueError) as exc:
                raise StorageFailure(
                    f"Failed to write giveaway snapshot {self.path}: {exc}"
                ) from exc

    # --- Internal helpers -------------------------------------------------

    def _write_snapshot(self, payload: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(payload, indent=2, ensure_ascii=False)
        with self.tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
        self.tmp_path.replace(self.path)

    def _set_aside(self) -> None:
        backup = self.path.with_name(self.path.name + ".bak")
        try:
            self.path.replace(backup)
        except OSError:
            LOGGER.exception("Could not move corrupt snapshot %s aside", self.path)
            return
        LOGGER.warning("Corrupt snapshot kept as %s", backup)

    def _decode(self, payload: object) -> Dict[str, GiveawayRecord]:
        if isinstance(payload, dict):
            entries = payload.get("giveaways", {})
            if isinstance(entries, dict):
                items = list(entries.values())
            else:
                items = entries if isinstance(entries, list) else []
        elif isinstance(payload, list):
            # Legacy snapshots stored a bare list of records.
            items = payload
        else:
            LOGGER.error("Giveaway snapshot %s has an unexpected shape; ignoring it.", self.path)
            self._set_aside()
            return {}

        records: Dict[str, GiveawayRecord] = {}
        for item in items:
            try:
                record = GiveawayRecord.from_payload(item)
            except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
                LOGGER.warning("Skipping undecodable giveaway entry %r: %s", item, exc)
                continue
            records[record.id] = record
        return records
