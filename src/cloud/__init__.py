"""
Delivery sinks.
"""

from .local import LocalDirectorySink
from .sink import DeliveredFile, DeliveryError, FolderRecord, Sink

__all__ = ["DeliveredFile", "DeliveryError", "FolderRecord", "LocalDirectorySink", "Sink"]
