from __future__ import annotations

from pathlib import Path
from typing import Sequence

from room_pipeline import ModelSpec, PipelineSettings


PROJECT_ROOT = Path(__file__).resolve().parent

# Models to execute in order. Paths are relative to `model_checkpoints`.
# The first model is the primary one; secondary models get a lower trust weight.
ENABLED_MODELS: Sequence[ModelSpec] = (
    ModelSpec(name="rooms_yolov8", engine="ultralytics", path=Path("rooms_yolov8.pt"), weight=1.0),
    ModelSpec(name="rooms_seg", engine="torchscript", path=Path("rooms_seg.torchscript"), weight=0.8),
)

# Square model input size and overlap between neighbouring tiles, in pixels.
TILE_SIZE = 640
TILE_OVERLAP = 64

# "tiled", "single", or "auto" (tiled above MAX_SINGLE_SIZE pixels on a side).
TILING_MODE = "auto"

# Minimum weighted confidence kept by the decoder.
CONFIDENCE_THRESHOLD = 0.1

# IoU thresholds of the two fusion stages.
GROUPING_THRESHOLD = 0.5
NMS_THRESHOLD = 0.45

# Tiles processed concurrently. 1 keeps the run sequential.
MAX_WORKERS = 1

# Box coordinates in model outputs: "pixels" or "normalized" (fractions of the tile).
# A model can override this with ModelSpec.coordinate_mode.
COORDINATE_MODE = "pixels"


def load_config(project_root: Path | None = None, **overrides) -> PipelineSettings:
    root = project_root or PROJECT_ROOT
    models_root = root / "model_checkpoints"
    values = dict(
        tile_size=TILE_SIZE,
        overlap=TILE_OVERLAP,
        confidence_threshold=CONFIDENCE_THRESHOLD,
        grouping_threshold=GROUPING_THRESHOLD,
        nms_threshold=NMS_THRESHOLD,
        mode=TILING_MODE,
        max_workers=MAX_WORKERS,
        coordinate_mode=COORDINATE_MODE,
        models=tuple(
            ModelSpec(
                name=spec.name,
                engine=spec.engine,
                path=models_root / spec.path,
                weight=spec.weight,
                coordinate_mode=spec.coordinate_mode,
            )
            for spec in ENABLED_MODELS
        ),
    )
    values.update({key: value for key, value in overrides.items() if value is not None})
    return PipelineSettings(**values)


__all__ = ["load_config", "PROJECT_ROOT"]
