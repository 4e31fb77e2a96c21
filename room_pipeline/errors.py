"""Exception taxonomy shared by the tiling, decoding and orchestration stages."""

from __future__ import annotations

from typing import Sequence

from .types import TileFailure


class RoomDetectionError(Exception):
    """Base class for every error raised by the room detection pipeline."""


class ConfigurationError(RoomDetectionError, ValueError):
    """Invalid pipeline configuration, detected before any inference runs."""


class TileGenerationError(ConfigurationError):
    """Tile size / overlap combination cannot cover the image."""


class InferenceError(RoomDetectionError):
    """An engine raised or returned output that does not match its declared shape."""


class DecodeError(InferenceError):
    """An output tensor has a layout the decoder does not understand."""


class AllTilesFailedError(RoomDetectionError):
    """Every (tile, model) combination failed; nothing could be inferred."""

    def __init__(self, failures: Sequence[TileFailure]):
        self.failures = list(failures)
        first = self.failures[0].error if self.failures else "no inference attempted"
        super().__init__(
            f"All {len(self.failures)} tile/model inference calls failed (first error: {first})."
        )


class PipelineCancelled(RoomDetectionError):
    """The run was cancelled between tiles; no partial result is produced."""
