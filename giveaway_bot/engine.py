"""Giveaway lifecycle: creation, automatic and manual endings, restart recovery."""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from random import Random
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .backend import BackendClient, RemoteEndResult
from .duration import DAY_MS, MAX_DURATION_MS, MINUTE_MS, parse_duration
from .entrants import EntrantTracker
from .errors import (
    GiveawayError,
    NotFoundError,
    PresentationFailure,
    RemoteCallFailure,
    StorageFailure,
    ValidationError,
)
from .models import GiveawayRecord, GiveawaySpec, Participant, dedupe
from .presenter import GiveawayPresenter
from .scheduler import DEFAULT_GRACE_SECONDS, GiveawayScheduler, utcnow
from .storage import GiveawayStorage

log = logging.getLogger(__name__)

EndRequest = Tuple[str, Optional[str], asyncio.Future]


def draw_winners(
    entrants: Iterable[str], count: int, rng: Optional[Random] = None
) -> List[str]:
    """Pick ``min(count, distinct entrants)`` ids with a Fisher-Yates shuffle."""
    pool = dedupe(entrants)
    if not pool or count <= 0:
        return []
    rng = rng or secrets.SystemRandom()
    for i in range(len(pool) - 1, 0, -1):
        j = rng.randrange(i + 1)
        pool[i], pool[j] = pool[j], pool[i]
    return pool[: min(count, len(pool))]


class GiveawayEngine:
    """Coordinates the giveaway state machine: Active -> Ended.

    Every end trigger (expired timer, manual command, restart recovery) is
    queued and handled by a single worker task, one request at a time. The
    first request for a giveaway performs the transition; later ones see
    ``ended`` and return the finished record untouched.
    """

    def __init__(
        self,
        storage: GiveawayStorage,
        presenter: GiveawayPresenter,
        *,
        backend: Optional[BackendClient] = None,
        min_duration_ms: int = MINUTE_MS,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], object] = asyncio.sleep,
        rng: Optional[Random] = None,
    ) -> None:
        self.storage = storage
        self.presenter = presenter
        self.backend = backend
        self.min_duration_ms = min_duration_ms
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self.records: Dict[str, GiveawayRecord] = {}
        self.scheduler = GiveawayScheduler(
            self._on_timer_due, grace_seconds=grace_seconds, clock=clock, sleep=sleep
        )
        self.tracker = EntrantTracker(self.records, self.save_state, presenter, backend)
        self._end_requests: asyncio.Queue[EndRequest] = asyncio.Queue()
        self._end_worker: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    # --- Startup / shutdown -------------------------------------------------

    async def load(self) -> None:
        try:
            loaded = await self.storage.load_all()
        except Exception as exc:
            log.exception("Failed to load persisted giveaways, starting empty: %s", exc)
            loaded = {}
        self.records.clear()
        self.records.update(loaded)
        self.start()

        active = [record for record in self.records.values() if not record.ended]
        for record in active:
            self.scheduler.arm(record)
        log.info(
            "Loaded %d giveaway(s), %d still active.", len(self.records), len(active)
        )

    def start(self) -> None:
        if self._end_worker is None or self._end_worker.done():
            self._end_worker = asyncio.create_task(
                self._process_end_requests(), name="giveaway-end-worker"
            )

    async def shutdown(self) -> None:
        self.scheduler.cancel_all()
        for task in list(self._background):
            task.cancel()
        if self._end_worker is not None:
            self._end_worker.cancel()
            try:
                await self._end_worker
            except asyncio.CancelledError:
                pass
            self._end_worker = None
        while not self._end_requests.empty():
            _, _, future = self._end_requests.get_nowait()
            if not future.done():
                future.cancel()
        if self.backend is not None:
            await self.backend.close()

    async def save_state(self) -> None:
        try:
            await self.storage.save_all(self.records)
        except StorageFailure as exc:
            log.exception(
                "Giveaway state could not be written; on-disk snapshot is stale."
            )
            await self._notify(f"Saving giveaway state failed: {exc}")

    async def audit_overdue(self) -> None:
        """Re-arm active giveaways that are past due but have no timer."""
        now = self._clock()
        for record in list(self.records.values()):
            if record.ended or record.end_at > now:
                continue
            if not self.scheduler.is_armed(record.id):
                log.info("Giveaway %s is overdue without a timer; re-arming.", record.id)
                self.scheduler.arm(record)

    # --- Queries --------------------------------------------------------------

    async def get_giveaway(self, giveaway_id: str) -> GiveawayRecord:
        record = self.records.get(str(giveaway_id))
        if record is None:
            raise NotFoundError(f"Giveaway {giveaway_id} does not exist.")
        return record

    async def list_giveaways(
        self, guild_id: Optional[str] = None, *, active_only: bool = False
    ) -> List[GiveawayRecord]:
        records = [
            record
            for record in self.records.values()
            if (guild_id is None or record.guild_id == str(guild_id))
            and not (active_only and record.ended)
        ]
        return sorted(records, key=lambda record: record.created_at)

    # --- Create -----------------------------------------------------------------

    def _validate(self, spec: GiveawaySpec) -> int:
        if not spec.prize or not spec.prize.strip():
            raise ValidationError("A prize is required.")
        if (
            isinstance(spec.winners_count, bool)
            or not isinstance(spec.winners_count, int)
            or spec.winners_count <= 0
        ):
            raise ValidationError("Winners count must be a positive whole number.")
        duration_ms = parse_duration(spec.duration)
        if duration_ms is None:
            raise ValidationError(
                f"Could not understand duration {spec.duration!r}. Try '30 minutes', '2 hours' or '1 day'."
            )
        if duration_ms < self.min_duration_ms:
            raise ValidationError(
                f"Duration must be at least {self.min_duration_ms // MINUTE_MS} minute(s)."
            )
        if duration_ms > MAX_DURATION_MS:
            raise ValidationError(
                f"Duration must be at most {MAX_DURATION_MS // DAY_MS} days."
            )
        return duration_ms

    async def create_giveaway(self, spec: GiveawaySpec) -> GiveawayRecord:
        duration_ms = self._validate(spec)
        created_at = self._clock()
        end_at = created_at + timedelta(milliseconds=duration_ms)

        message_id = await self.presenter.publish(spec, end_at)
        if message_id in self.records:
            raise GiveawayError(f"Giveaway id {message_id} is already in use.")

        record = GiveawayRecord(
            id=message_id,
            guild_id=str(spec.guild_id),
            channel_id=str(spec.channel_id),
            host_id=str(spec.host_id),
            prize=spec.prize.strip(),
            description=spec.description or "",
            winners_count=spec.winners_count,
            created_at=created_at,
            end_at=end_at,
        )
        self.records[record.id] = record
        await self.save_state()
        self.scheduler.arm(record)

        if self.backend is not None:
            self._spawn(self._register_remote(record, duration_ms))

        log.info(
            "Giveaway %s created in channel %s for %r, ending at %s",
            record.id,
            record.channel_id,
            record.prize,
            record.end_at.isoformat(),
        )
        await self._notify(
            f"Giveaway **{record.prize}** (`{record.id}`) started in <#{record.channel_id}>.",
            guild_id=record.guild_id,
        )
        return record

    async def _register_remote(self, record: GiveawayRecord, duration_ms: int) -> None:
        assert self.backend is not None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                remote = await self.backend.create(
                    guild_id=record.guild_id,
                    channel_id=record.channel_id,
                    message_id=record.id,
                    host_id=record.host_id,
                    duration_ms=duration_ms,
                    winners_count=record.winners_count,
                    prize=record.prize,
                    description=record.description,
                )
            except RemoteCallFailure as exc:
                log.warning(
                    "Remote registration of giveaway %s failed (attempt %d/%d): %s",
                    record.id,
                    attempt,
                    self.retry_attempts,
                    exc,
                )
                if attempt < self.retry_attempts and self.retry_delay > 0:
                    await self._sleep(self.retry_delay * attempt)
                continue

            record.remote_giveaway_id = remote.giveaway_id
            if remote.summary_url:
                record.remote_summary_url = remote.summary_url
            if record.ended:
                log.warning(
                    "Giveaway %s was registered remotely as %s after it had already ended.",
                    record.id,
                    remote.giveaway_id,
                )
            else:
                log.info("Giveaway %s registered remotely as %s", record.id, remote.giveaway_id)
            await self.save_state()
            return

        log.warning("Giveaway %s stays local-only; remote registration gave up.", record.id)

    # --- Entrants -----------------------------------------------------------------

    async def record_entrant_change(
        self, giveaway_id: str, participant: Union[Participant, str], joined: bool
    ) -> int:
        if not isinstance(participant, Participant):
            participant = Participant(user_id=str(participant))
        if joined:
            return await self.tracker.join(str(giveaway_id), participant)
        return await self.tracker.leave(str(giveaway_id), participant)

    # --- End ----------------------------------------------------------------------

    async def end_giveaway(
        self, giveaway_id: str, ended_by: Optional[str] = None
    ) -> GiveawayRecord:
        giveaway_id = str(giveaway_id)
        if giveaway_id not in self.records:
            raise NotFoundError(f"Giveaway {giveaway_id} does not exist.")
        self.start()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._end_requests.put_nowait(
            (giveaway_id, str(ended_by) if ended_by is not None else None, future)
        )
        return await future

    async def _on_timer_due(self, giveaway_id: str) -> None:
        await self.end_giveaway(giveaway_id)

    async def _process_end_requests(self) -> None:
        while True:
            giveaway_id, ended_by, future = await self._end_requests.get()
            try:
                record = await self._finish(giveaway_id, ended_by)
            except GiveawayError as exc:
                if not future.done():
                    future.set_exception(exc)
            except Exception as exc:
                log.exception("Ending giveaway %s failed", giveaway_id)
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(record)
            finally:
                self._end_requests.task_done()

    async def _finish(self, giveaway_id: str, ended_by: Optional[str]) -> GiveawayRecord:
        record = self.records.get(giveaway_id)
        if record is None:
            raise NotFoundError(f"Giveaway {giveaway_id} does not exist.")
        if record.ended:
            log.debug("Giveaway %s already ended; ignoring end request.", giveaway_id)
            return record

        record.ended = True
        record.ended_at = self._clock()
        record.ended_by = ended_by
        self.scheduler.cancel(giveaway_id)

        try:
            await self._settle(record)
        finally:
            await self.save_state()

        winners = record.winners
        if winners:
            mentions = ", ".join(winner.mention for winner in winners)
            summary = f"finished with {len(winners)} winner(s): {mentions}."
        else:
            summary = "finished with no winners."
        log.info(
            "Giveaway %s ended (%s, by %s) with %d winner(s) from %d entrant(s)",
            record.id,
            record.winners_source,
            ended_by or "timer",
            len(winners),
            len(record.entrants_detail),
        )
        await self._notify(
            f"Giveaway **{record.prize}** (`{record.id}`) {summary}",
            guild_id=record.guild_id,
        )
        return record

    async def _settle(self, record: GiveawayRecord) -> None:
        """Reconcile winners with the backend, snapshot identities and present the result."""
        remote = await self._end_remote(record)

        if remote is not None and remote.has_winners:
            record.winners_source = "remote"
            winners = [await self._complete_identity(winner) for winner in remote.winners]
        else:
            record.winners_source = "local"
            winner_ids = draw_winners(record.entrants, record.winners_count, self._rng)
            winners = [await self._resolve_identity(user_id) for user_id in winner_ids]

        known: Dict[str, Participant] = {}
        if remote is not None:
            known = {participant.user_id: participant for participant in remote.participants}
        entrant_ids = dedupe([*record.entrants, *known])
        details = []
        for user_id in entrant_ids:
            participant = known.get(user_id)
            if participant is not None:
                details.append(await self._complete_identity(participant))
            else:
                details.append(await self._resolve_identity(user_id))

        record.winners = winners
        record.entrants_detail = details
        if remote is not None and remote.summary_url:
            record.remote_summary_url = remote.summary_url
        summary_url = record.remote_summary_url or record.jump_url

        try:
            await self.presenter.close_announcement(record, summary_url)
        except PresentationFailure as exc:
            log.warning("Could not update announcement of giveaway %s: %s", record.id, exc)
        try:
            await self.presenter.announce_winners(record, summary_url)
        except PresentationFailure as exc:
            log.warning("Could not announce winners of giveaway %s: %s", record.id, exc)

    async def _end_remote(self, record: GiveawayRecord) -> Optional[RemoteEndResult]:
        if not record.remote_giveaway_id or self.backend is None:
            return None
        try:
            return await self.backend.end(record.remote_giveaway_id)
        except RemoteCallFailure as exc:
            log.warning(
                "Remote end of giveaway %s (remote %s) failed; drawing winners locally. "
                "The backend may hold a different selection: %s",
                record.id,
                record.remote_giveaway_id,
                exc,
            )
            return None

    async def _resolve_identity(self, user_id: str) -> Participant:
        try:
            resolved = await self.presenter.resolve(user_id)
        except PresentationFailure as exc:
            log.debug("Could not resolve user %s: %s", user_id, exc)
            resolved = None
        return resolved or Participant(user_id=user_id)

    async def _complete_identity(self, participant: Participant) -> Participant:
        if participant.display_name or participant.username:
            return participant
        return await self._resolve_identity(participant.user_id)

    # --- Helpers ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _notify(self, message: str, *, guild_id: Optional[str] = None) -> None:
        try:
            await self.presenter.notify_log(message, guild_id=guild_id)
        except PresentationFailure as exc:
            log.warning("Failed to send giveaway log message: %s", exc)
