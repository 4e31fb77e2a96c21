from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .scoring import validate_weight

ROOM_CLASS_NAMES: Tuple[str, ...] = (
    "room",
    "bedroom",
    "living_room",
    "kitchen",
    "bathroom",
    "office",
    "dining_room",
)
DEFAULT_LABEL = "room"


def label_for_class(class_id: int, class_names: Sequence[str] = ROOM_CLASS_NAMES) -> str:
    """Return the label of ``class_id``; unknown ids fall back to the generic room label."""
    if 0 <= class_id < len(class_names):
        return class_names[class_id]
    return DEFAULT_LABEL


def _freeze_mask(mask: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if mask is None:
        return None
    frozen = np.array(mask, dtype=np.float32, copy=True)
    if frozen.ndim != 2 or frozen.size == 0:
        return None
    frozen.setflags(write=False)
    return frozen


@dataclass(frozen=True)
class Detection:
    """Room candidate in full-image pixel coordinates (left, top, width, height)."""

    left: float
    top: float
    width: float
    height: float
    confidence: float
    class_id: int = 0
    label: str = DEFAULT_LABEL
    mask: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "mask", _freeze_mask(self.mask))

    @property
    def is_segmented(self) -> bool:
        return self.mask is not None

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return self.left + self.width * 0.5, self.top + self.height * 0.5

    def to_xyxy(self) -> List[float]:
        return [self.left, self.top, self.right, self.bottom]

    def to_bbox(self) -> List[float]:
        return [self.left, self.top, self.width, self.height]

    def with_mask(self, mask: Optional[np.ndarray]) -> "Detection":
        return replace(self, mask=mask)

    def __str__(self) -> str:
        suffix = " (segmented)" if self.is_segmented else ""
        return (
            f"Detection(label: {self.label}{suffix}, confidence: {self.confidence:.2f}, "
            f"box: [{self.left:.1f}, {self.top:.1f}, {self.width:.1f}, {self.height:.1f}])"
        )


@dataclass(frozen=True)
class RawCandidate:
    """Decoder output: centre-based box in model-input pixels of a single tile."""

    cx: float
    cy: float
    width: float
    height: float
    confidence: float
    class_id: int = 0
    label: str = DEFAULT_LABEL
    mask: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "mask", _freeze_mask(self.mask))


@dataclass(frozen=True)
class ProcessingBounds:
    """Authoritative sub-rectangle of a tile, in tile-local source pixels."""

    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom

    def to_global(self, offset_x: int, offset_y: int) -> "ProcessingBounds":
        return ProcessingBounds(
            left=self.left + offset_x,
            top=self.top + offset_y,
            width=self.width,
            height=self.height,
        )


@dataclass(frozen=True)
class TileGeometry:
    """Placement of one tile on the source image, before any pixels are touched."""

    index: int
    row: int
    column: int
    offset_x: int
    offset_y: int
    requested_width: int
    requested_height: int
    tile_size: int
    scale_x: float = 1.0
    scale_y: float = 1.0
    bounds: Optional[ProcessingBounds] = None

    def __post_init__(self) -> None:
        if self.bounds is None:
            object.__setattr__(
                self,
                "bounds",
                ProcessingBounds(left=0, top=0, width=self.requested_width, height=self.requested_height),
            )


@dataclass(frozen=True)
class TileDescriptor:
    """Tile geometry plus the square, padded (or resized) pixel buffer fed to the model."""

    geometry: TileGeometry
    tile_image: np.ndarray = field(compare=False, repr=False)

    @property
    def index(self) -> int:
        return self.geometry.index

    @property
    def offset_x(self) -> int:
        return self.geometry.offset_x

    @property
    def offset_y(self) -> int:
        return self.geometry.offset_y

    @property
    def requested_width(self) -> int:
        return self.geometry.requested_width

    @property
    def requested_height(self) -> int:
        return self.geometry.requested_height

    @property
    def tile_size(self) -> int:
        return self.geometry.tile_size

    @property
    def scale_x(self) -> float:
        return self.geometry.scale_x

    @property
    def scale_y(self) -> float:
        return self.geometry.scale_y


@dataclass(frozen=True)
class ModelHandle:
    """Loaded inference engine plus the trust weight applied to its confidences.

    ``coordinate_mode`` set to ``"normalized"`` marks a model whose boxes are fractions of the tile.
    """

    engine: Any
    weight: float = 1.0
    name: str = "model"
    coordinate_mode: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "weight", validate_weight(self.weight))


@dataclass(frozen=True)
class FusionParams:
    """Thresholds used by the clustering and suppression stages."""

    grouping_threshold: float = 0.5
    nms_threshold: float = 0.45

    def __post_init__(self) -> None:
        for name in ("grouping_threshold", "nms_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}.")


@dataclass(frozen=True)
class TileFailure:
    """A (tile, model) pair that produced no usable output."""

    tile_index: int
    model_index: int
    model_name: str
    error: str


@dataclass
class PipelineResult:
    detections: List[Detection]
    image_width: int
    image_height: int
    tiles_total: int
    tiles_processed: int
    raw_candidates: int = 0
    failures: List[TileFailure] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def degraded(self) -> bool:
        return bool(self.failures)

    @property
    def is_empty(self) -> bool:
        return not self.detections
