"""Delta Sync - Watermark based pull/push synchronization for offline-first clients."""

__version__ = "0.1.0"
__author__ = "Delta Sync Contributors"

from delta_sync.config import Settings

__all__ = ["Settings", "__version__"]
