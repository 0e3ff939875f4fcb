"""Core utilities for configuration, logging, errors, and shared models."""

from .config import AppSettings, JmapSettings, SplitsSettings, load_app_settings
from .errors import (
    AuthError,
    BadRequestError,
    InternalError,
    NetworkError,
    NotConnectedError,
    NotFoundError,
    SplitmailError,
)
from .locks import AsyncRWLock
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "AsyncRWLock",
    "AuthError",
    "BadRequestError",
    "InternalError",
    "JmapSettings",
    "NetworkError",
    "NotConnectedError",
    "NotFoundError",
    "SplitmailError",
    "SplitsSettings",
    "configure_logging",
    "load_app_settings",
]
