"""Offer/answer session tracking for tunnel establishment."""

from l2h.signaling.broker import (
    DEFAULT_SESSION_TTL,
    Answerer,
    OpaqueAnswerer,
    SessionStatus,
    SignalingBroker,
    SignalingSession,
)
from l2h.signaling.lock import ReadWriteLock

__all__ = [
    "DEFAULT_SESSION_TTL",
    "Answerer",
    "OpaqueAnswerer",
    "SessionStatus",
    "SignalingBroker",
    "SignalingSession",
    "ReadWriteLock",
]
