"""
Utility helpers for ready-sync.
"""

from .instance_guard import DEFAULT_LOCK_TTL, InstanceLockError, ProcessLock, acquire_process_lock
from .logging_setup import LOGGER_NAME, setup_logging

__all__ = [
    "DEFAULT_LOCK_TTL",
    "InstanceLockError",
    "LOGGER_NAME",
    "ProcessLock",
    "acquire_process_lock",
    "setup_logging",
]
