# video_labeler/errors.py
"""Exception hierarchy for video_labeler."""
from __future__ import annotations


class VideoLabelerError(Exception):
    """Base exception for all video_labeler errors."""

    pass


class StoreError(VideoLabelerError):
    """Raised by a key-value store when a read or write cannot be completed."""

    pass


class StoreQuotaError(StoreError):
    """Raised when a write would push the store over its capacity."""

    pass


class AnalysisError(VideoLabelerError):
    """Raised when the external analysis service fails for one item."""

    def __init__(self, item_id: str, message: str):
        super().__init__(f"{item_id}: {message}")
        self.item_id = item_id
        self.message = message
