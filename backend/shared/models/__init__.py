"""Shared data models for the livetally worker and admin scripts."""

from .analytics import SESSION_COUNTERS, Interaction, StreamInfo, StreamSession, UserStat
from .identity import JobStatus, MonitoredIdentity

__all__ = [
    "Interaction",
    "JobStatus",
    "MonitoredIdentity",
    "SESSION_COUNTERS",
    "StreamInfo",
    "StreamSession",
    "UserStat",
]
