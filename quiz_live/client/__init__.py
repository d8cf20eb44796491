"""Calling-side helpers for talking to a QuizLive server."""

from .in_flight import InFlightRequests, submission_key
from .session_client import RealtimeChannel, SessionClient

__all__ = [
    "InFlightRequests",
    "RealtimeChannel",
    "SessionClient",
    "submission_key",
]
