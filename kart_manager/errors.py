"""Exceptions raised by the event engine and the session helpers.

Routes translate these into JSON error bodies; nothing below the route layer
catches them.
"""


class KartManagerError(Exception):
    """Base class for all kart manager errors."""


class EventValidationError(KartManagerError, ValueError):
    """Rejected user input (setup form or round positions). State is unchanged."""


class RoundClosedError(KartManagerError):
    """The command is not valid for the event's current round."""


class SessionNotFound(KartManagerError):
    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


__all__ = [
    "KartManagerError",
    "EventValidationError",
    "RoundClosedError",
    "SessionNotFound",
]
