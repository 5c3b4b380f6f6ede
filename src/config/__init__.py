"""
Configuration package for ready-sync.
"""

from .settings import AppConfig, ConfigError, SyncSettings, default_lock_path

__all__ = ["AppConfig", "ConfigError", "SyncSettings", "default_lock_path"]
