"""
Run orchestration for ready-sync.
"""

__version__ = "0.1.0"
