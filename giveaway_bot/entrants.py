"""Join/leave handling for active giveaways."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from .backend import BackendClient
from .errors import NotFoundError, PresentationFailure, RemoteCallFailure
from .models import GiveawayRecord, Participant
from .presenter import GiveawayPresenter

log = logging.getLogger(__name__)


class EntrantTracker:
    """Mutates entrant sets, mirroring joins to the backend when one is bound.

    The local entrant list is the durable source of truth; the remote call is
    best-effort and only changes which count is reported back.
    """

    def __init__(
        self,
        records: Dict[str, GiveawayRecord],
        persist: Callable[[], Awaitable[None]],
        presenter: GiveawayPresenter,
        backend: Optional[BackendClient] = None,
    ) -> None:
        self.records = records
        self._persist = persist
        self.presenter = presenter
        self.backend = backend

    def _get(self, giveaway_id: str) -> GiveawayRecord:
        record = self.records.get(giveaway_id)
        if record is None:
            raise NotFoundError(f"Giveaway {giveaway_id} does not exist.")
        return record

    async def join(self, giveaway_id: str, participant: Participant) -> int:
        record = self._get(giveaway_id)
        if record.ended:
            log.debug("Ignoring join of %s to ended giveaway %s", participant.user_id, giveaway_id)
            return record.entrant_count

        remote_count: Optional[int] = None
        if record.remote_giveaway_id and self.backend is not None:
            try:
                remote_count = await self.backend.join(record.remote_giveaway_id, participant)
            except RemoteCallFailure as exc:
                log.warning(
                    "Remote join for giveaway %s (remote %s) failed, keeping local count: %s",
                    giveaway_id,
                    record.remote_giveaway_id,
                    exc,
                )
            # The giveaway may have closed while the remote call was in flight.
            if record.ended:
                return record.entrant_count

        changed = record.add_entrant(participant.user_id)
        count = remote_count if remote_count is not None else record.entrant_count
        if changed:
            log.info("%s joined giveaway %s (%d entrants)", participant.user_id, giveaway_id, count)
            await self._after_change(record, count)
        return count

    async def leave(self, giveaway_id: str, participant: Participant) -> int:
        record = self._get(giveaway_id)
        if record.ended:
            log.debug("Ignoring leave of %s from ended giveaway %s", participant.user_id, giveaway_id)
            return record.entrant_count
        if record.remove_entrant(participant.user_id):
            log.info(
                "%s left giveaway %s (%d entrants)",
                participant.user_id,
                giveaway_id,
                record.entrant_count,
            )
            await self._after_change(record, record.entrant_count)
        return record.entrant_count

    async def _after_change(self, record: GiveawayRecord, count: int) -> None:
        await self._persist()
        try:
            await self.presenter.refresh(record, count)
        except PresentationFailure as exc:
            log.warning("Could not refresh entry count for giveaway %s: %s", record.id, exc)
