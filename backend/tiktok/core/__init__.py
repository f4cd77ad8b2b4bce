"""Core modules for the TikTok worker."""

from .clock import Clock, Scheduler, SystemClock
from .config import BACKEND_DIR, TIKTOK_DIR, TikTokWorkerSettings, get_settings
from .health_server import HealthCheckServer
from .logging import setup_logging

__all__ = [
    # Settings
    "get_settings",
    "TikTokWorkerSettings",
    # Path Constants
    "TIKTOK_DIR",
    "BACKEND_DIR",
    # Setup functions
    "setup_logging",
    # Services
    "HealthCheckServer",
    # Time
    "Clock",
    "Scheduler",
    "SystemClock",
]
