"""Shared repository layer for the livetally worker and admin scripts."""

from .analytics import AnalyticsRepository
from .identity import IdentityRepository, normalize_username
from .job_control import JobControlRepository

__all__ = [
    "AnalyticsRepository",
    "IdentityRepository",
    "JobControlRepository",
    "normalize_username",
]
