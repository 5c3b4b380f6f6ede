"""
Dedup state persistence.
"""

from .store import STATE_VERSION, DedupStore

__all__ = ["DedupStore", "STATE_VERSION"]
