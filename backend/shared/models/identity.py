"""Data models for tracked_usernames and job_control tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass
class MonitoredIdentity:
    """A TikTok username the worker keeps a supervisor for."""

    username: str
    is_active: bool = True
    display_name: str | None = None
    added_at: datetime | None = None
    last_seen: datetime | None = None
    total_streams: int = 0
    total_duration: int = 0
    notes: str | None = None
    id: int | None = None


class JobStatus(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
