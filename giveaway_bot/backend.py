"""HTTP client for the remote giveaway backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import RemoteCallFailure
from .models import Participant

log = logging.getLogger(__name__)


@dataclass(slots=True)
class RemoteGiveaway:
    giveaway_id: str
    summary_url: Optional[str] = None


@dataclass(slots=True)
class RemoteEndResult:
    winners: List[Participant] = field(default_factory=list)
    participants: List[Participant] = field(default_factory=list)
    participants_count: Optional[int] = None
    summary_url: Optional[str] = None
    # False when the backend did not report a winners list at all.
    has_winners: bool = False


class BackendClient:
    """Thin aiohttp wrapper around the backend's create/join/end endpoints.

    Every failure (transport error, non-2xx status, ``success: false``) is
    raised as :class:`RemoteCallFailure`; callers decide how to fall back.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        *,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def create(
        self,
        *,
        guild_id: str,
        channel_id: str,
        message_id: str,
        host_id: str,
        duration_ms: int,
        winners_count: int,
        prize: str,
        description: str,
    ) -> RemoteGiveaway:
        data = await self._post(
            "create",
            {
                "guildId": guild_id,
                "channelId": channel_id,
                "messageId": message_id,
                "hostId": host_id,
                "durationMs": duration_ms,
                "winnersCount": winners_count,
                "prize": prize,
                "description": description,
            },
        )
        giveaway = data.get("giveaway") if isinstance(data.get("giveaway"), dict) else {}
        giveaway_id = data.get("giveawayId") or giveaway.get("id")
        if not giveaway_id:
            raise RemoteCallFailure("Backend create response did not include a giveaway id.")
        summary_url = data.get("summaryUrl") or giveaway.get("summaryUrl")
        return RemoteGiveaway(giveaway_id=str(giveaway_id), summary_url=summary_url)

    async def join(self, giveaway_id: str, participant: Participant) -> Optional[int]:
        data = await self._post(
            "join",
            {
                "giveawayId": giveaway_id,
                "discordId": participant.user_id,
                "username": participant.username,
                "displayName": participant.display_name,
                "avatarUrl": participant.avatar_url,
            },
        )
        count = data.get("participantsCount")
        try:
            return int(count) if count is not None else None
        except (TypeError, ValueError):
            log.debug("Ignoring non-numeric participantsCount %r", count)
            return None

    async def end(self, giveaway_id: str) -> RemoteEndResult:
        data = await self._post("end", {"giveawayId": giveaway_id})
        giveaway = data.get("giveaway") if isinstance(data.get("giveaway"), dict) else {}
        raw_winners = data.get("winners")
        raw_participants = giveaway.get("participants") or []
        count = giveaway.get("participantsCount")
        return RemoteEndResult(
            winners=_participants(raw_winners or []),
            participants=_participants(raw_participants),
            participants_count=int(count) if isinstance(count, int) else len(raw_participants),
            summary_url=giveaway.get("summaryUrl") or data.get("summaryUrl"),
            has_winners=isinstance(raw_winners, list),
        )

    async def _post(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{action}"
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        session = self._get_session()
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise RemoteCallFailure(
                        f"Backend {action} returned HTTP {response.status}: {body[:200]}"
                    )
                data = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise RemoteCallFailure(f"Backend {action} request failed: {exc}") from exc
        except TimeoutError as exc:
            raise RemoteCallFailure(f"Backend {action} request timed out") from exc
        except ValueError as exc:
            raise RemoteCallFailure(f"Backend {action} returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise RemoteCallFailure(f"Backend {action} returned a non-object body.")
        if data.get("success") is False:
            raise RemoteCallFailure(
                f"Backend {action} reported failure: {data.get('message') or data.get('error')}"
            )
        return data

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session


def _participants(entries: List[Any]) -> List[Participant]:
    result: List[Participant] = []
    for entry in entries:
        if isinstance(entry, dict):
            participant = Participant.from_remote(entry)
        elif entry is not None:
            participant = Participant(user_id=str(entry))
        else:
            participant = None
        if participant is not None:
            result.append(participant)
    return result
