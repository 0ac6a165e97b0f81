"""Data models used for giveaway persistence and runtime state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterable, List, Optional

DISCORD_MESSAGE_URL = "https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"


def dedupe(values: Iterable[Any]) -> List[str]:
    """Return the values as strings with duplicates removed, keeping first-seen order."""
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        if value is None:
            continue
        key = str(value)
        if key in seen:
            continue
        seen.add(key)
        result.append(key)
    return result


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def from_timestamp(value: Any) -> datetime:
    """Accept either epoch milliseconds or an ISO-8601 string."""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True)
class Participant:
    """Display identity of an entrant or winner."""
    user_id: str
    username: str = ""
    display_name: str = ""
    avatar_url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.user_id

    @property
    def mention(self) -> str:
        return f"<@{self.user_id}>"

    def to_payload(self) -> dict:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "Participant":
        return cls(
            user_id=str(payload["user_id"]),
            username=str(payload.get("username") or ""),
            display_name=str(payload.get("display_name") or ""),
            avatar_url=payload.get("avatar_url"),
        )

    @classmethod
    def from_remote(cls, payload: dict) -> Optional["Participant"]:
        """Build a participant from a backend record, tolerating its field names."""
        user_id = (
            payload.get("discordId")
            or payload.get("userId")
            or payload.get("user_id")
            or payload.get("id")
        )
        if user_id is None:
            return None
        return cls(
            user_id=str(user_id),
            username=str(payload.get("username") or ""),
            display_name=str(payload.get("displayName") or payload.get("display_name") or ""),
            avatar_url=payload.get("avatarUrl") or payload.get("avatar_url"),
        )


@dataclass(slots=True)
class GiveawaySpec:
    """Request to launch a giveaway, as received from the command layer."""
    guild_id: str
    channel_id: str
    host_id: str
    prize: str
    winners_count: int
    duration: str
    description: str = ""


@dataclass(slots=True)
class GiveawayRecord:
    """Represents an active or finished giveaway keyed by its announcement message id."""
    id: str
    guild_id: str
    channel_id: str
    host_id: str
    prize: str
    description: str
    winners_count: int
    created_at: datetime
    end_at: datetime
    entrants: List[str] = field(default_factory=list)
    ended: bool = False
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None
    winners: List[Participant] = field(default_factory=list)
    entrants_detail: List[Participant] = field(default_factory=list)
    winners_source: Optional[str] = None
    remote_giveaway_id: Optional[str] = None
    remote_summary_url: Optional[str] = None

    def __post_init__(self) -> None:
        self.entrants = dedupe(self.entrants)

    @property
    def entrant_count(self) -> int:
        return len(self.entrants)

    @property
    def jump_url(self) -> str:
        return DISCORD_MESSAGE_URL.format(
            guild_id=self.guild_id, channel_id=self.channel_id, message_id=self.id
        )

    def add_entrant(self, user_id: str) -> bool:
        """Add an entrant if they are not already present."""
        if user_id in self.entrants:
            return False
        self.entrants.append(user_id)
        return True

    def remove_entrant(self, user_id: str) -> bool:
        """Remove an entrant if present."""
        if user_id not in self.entrants:
            return False
        self.entrants.remove(user_id)
        return True

    def to_payload(self) -> dict:
        """Serialize the giveaway to a JSON-serialisable structure."""
        return {
            "id": self.id,
            "guild_id": self.guild_id,
            "channel_id": self.channel_id,
            "host_id": self.host_id,
            "prize": self.prize,
            "description": self.description,
            "winners_count": self.winners_count,
            "created_at": to_millis(self.created_at),
            "end_at": to_millis(self.end_at),
            "entrants": dedupe(self.entrants),
            "ended": self.ended,
            "ended_at": to_millis(self.ended_at) if self.ended_at else None,
            "ended_by": self.ended_by,
            "winners": [winner.to_payload() for winner in self.winners],
            "entrants_detail": [entry.to_payload() for entry in self.entrants_detail],
            "winners_source": self.winners_source,
            "remote_giveaway_id": self.remote_giveaway_id,
            "remote_summary_url": self.remote_summary_url,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "GiveawayRecord":
        """Reconstruct a record from serialized payload data."""
        ended_at_raw = payload.get("ended_at")
        ended_by = payload.get("ended_by")
        remote_id = payload.get("remote_giveaway_id")
        return cls(
            id=str(payload["id"]),
            guild_id=str(payload["guild_id"]),
            channel_id=str(payload["channel_id"]),
            host_id=str(payload.get("host_id") or ""),
            prize=str(payload.get("prize") or ""),
            description=str(payload.get("description") or ""),
            winners_count=int(payload["winners_count"]),
            created_at=from_timestamp(payload["created_at"]),
            end_at=from_timestamp(payload["end_at"]),
            entrants=list(payload.get("entrants", [])),
            ended=bool(payload.get("ended", False)),
            ended_at=from_timestamp(ended_at_raw) if ended_at_raw is not None else None,
            ended_by=str(ended_by) if ended_by is not None else None,
            winners=[Participant.from_payload(p) for p in payload.get("winners", [])],
            entrants_detail=[
                Participant.from_payload(p) for p in payload.get("entrants_detail", [])
            ],
            winners_source=payload.get("winners_source"),
            remote_giveaway_id=str(remote_id) if remote_id is not None else None,
            remote_summary_url=payload.get("remote_summary_url"),
        )
