"""Error taxonomy shared by the giveaway engine and its collaborators."""

from __future__ import annotations


class GiveawayError(RuntimeError):
    """Base class for giveaway related failures."""


class ValidationError(GiveawayError):
    """Raised when a user supplied value cannot be accepted."""


class NotFoundError(GiveawayError):
    """Raised when an operation references an unknown giveaway."""


class RemoteCallFailure(GiveawayError):
    """Raised when the remote giveaway backend rejects or fails a call."""


class PresentationFailure(GiveawayError):
    """Raised when a Discord message cannot be sent or edited."""


class StorageFailure(GiveawayError):
    """Raised when the giveaway snapshot cannot be written."""
