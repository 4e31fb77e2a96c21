"""
Tiled, multi-model room detection for large floor plan images.

The package is organised in the following submodules:

```
room_pipeline/
    __init__.py          - package marker and convenience exports
    types.py             - dataclasses shared across modules
    errors.py            - exception hierarchy
    tiling.py            - tile planning and pixel extraction
    decoding.py          - raw output tensors -> tile-local candidates
    mapping.py           - tile-local -> full-image coordinates
    scoring.py           - per-model confidence weighting
    fusion.py            - weighted clustering + NMS over all candidates
    suppression/         - numpy IoU, clustering and NMS kernels
    engines.py           - inference engine wrappers
    orchestrator.py      - high-level pipeline coordination
    export.py            - COCO JSON export helpers
```

The entrypoint for most workflows is :class:`room_pipeline.orchestrator.RoomDetectionPipeline`.
"""

from .errors import (
    AllTilesFailedError,
    ConfigurationError,
    DecodeError,
    InferenceError,
    PipelineCancelled,
    RoomDetectionError,
    TileGenerationError,
)
from .orchestrator import (
    CancellationToken,
    ModelSpec,
    PipelineSettings,
    PipelineState,
    RoomDetectionPipeline,
    recommend_mode,
)
from .types import Detection, FusionParams, ModelHandle, PipelineResult

__all__ = [
    "RoomDetectionPipeline",
    "PipelineSettings",
    "PipelineState",
    "CancellationToken",
    "ModelSpec",
    "ModelHandle",
    "Detection",
    "FusionParams",
    "PipelineResult",
    "recommend_mode",
    "RoomDetectionError",
    "ConfigurationError",
    "TileGenerationError",
    "InferenceError",
    "DecodeError",
    "AllTilesFailedError",
    "PipelineCancelled",
]
