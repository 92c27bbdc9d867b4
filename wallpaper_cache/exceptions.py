"""
Custom exception hierarchy for the wallpaper ratio cache.
"""


class WallpaperCacheError(Exception):
    """Base exception for all wallpaper cache errors."""
    pass


class MetadataExtractionError(WallpaperCacheError):
    """Raised when pixel dimensions cannot be read from a file."""
    pass


class IndexStoreError(WallpaperCacheError):
    """Raised when the persistent index cannot be opened."""
    pass


class EngineStateError(WallpaperCacheError):
    """Raised when a lifecycle operation is called in the wrong state."""
    pass
