"""
Decoding of raw detector output tensors into tile-local room candidates.

Two layouts are recognised for a ``[1, A, B]`` detection tensor and told
apart purely by shape:

``rows``    (``A > B``)  one row per candidate: x, y, w, h, objectness, class scores...
``columns`` (``A <= B``) one column per candidate: rows 0-3 are x, y, w, h, row 4 the score

The shape rule is a heuristic: a model whose feature count exceeds its
candidate count is read as ``rows``.

An optional second tensor carries masks, either one grid per candidate
(``[1, N, mh, mw]``) or a prototype stack (``[1, K, mh, mw]``) combined with
the last ``K`` features of each candidate as coefficients.

Box coordinates are read as tile pixels. Models that emit coordinates
normalised to ``[0, 1]`` must be declared with ``coordinate_mode="normalized"``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import DecodeError, InferenceError
from .scoring import weighted_confidence
from .types import ROOM_CLASS_NAMES, RawCandidate, label_for_class

logger = logging.getLogger(__name__)

COORDINATE_MODES = ("pixels", "normalized")
FALLBACK_CONFIDENCE = 0.8


@dataclass(frozen=True)
class OutputTensor:
    """Raw values of one output tensor together with its declared shape."""

    shape: Tuple[int, ...]
    values: Any


def _ragged_shape(data: Any) -> List[int]:
    if data is None or isinstance(data, (str, bytes)) or not hasattr(data, "__len__"):
        return []
    dims = [len(data)]
    child_dims: List[int] = []
    for item in data:
        sub = _ragged_shape(item)
        for depth, size in enumerate(sub):
            if depth < len(child_dims):
                child_dims[depth] = max(child_dims[depth], size)
            else:
                child_dims.append(size)
    return dims + child_dims


def _fill_ragged(target: np.ndarray, data: Any) -> None:
    for idx, item in enumerate(data):
        if idx >= target.shape[0]:
            break
        if target.ndim == 1:
            try:
                target[idx] = np.nan if item is None else float(item)
            except (TypeError, ValueError):
                target[idx] = np.nan
        elif item is not None and hasattr(item, "__len__"):
            _fill_ragged(target[idx], item)


def as_array(output: Any) -> np.ndarray:
    """Convert one engine output to a float32 array, honouring a declared shape.

    Nested sequences with missing (``None``) or short rows are padded with NaN
    so the decoder can skip those candidates individually.
    """
    declared: Optional[Tuple[int, ...]] = None
    data = output
    if isinstance(output, OutputTensor):
        declared = tuple(int(dim) for dim in output.shape)
        data = output.values

    try:
        array = np.asarray(data, dtype=np.float32)
    except (TypeError, ValueError):
        shape = list(declared) if declared is not None else _ragged_shape(data)
        array = np.full(shape, np.nan, dtype=np.float32)
        if array.ndim:
            _fill_ragged(array, data)

    if declared is not None and array.shape != declared:
        if array.size != int(np.prod(declared)):
            raise InferenceError(
                f"Output holds {array.size} values but its declared shape is {list(declared)}."
            )
        array = array.reshape(declared)
    return array


def normalize_mask(grid: np.ndarray) -> np.ndarray:
    """Min-max normalise a mask grid to [0, 1]; constant grids are clipped instead."""
    values = np.nan_to_num(np.asarray(grid, dtype=np.float32), nan=0.0, posinf=1.0, neginf=0.0)
    low = float(values.min())
    high = float(values.max())
    if high - low < 1e-12:
        return np.full(values.shape, min(1.0, max(0.0, low)), dtype=np.float32)
    return (values - low) / (high - low)


def resample_mask(mask: np.ndarray, width: float, height: float) -> np.ndarray:
    """Bilinearly resample ``mask`` to the (rounded) pixel size of its box."""
    target_w = max(1, int(round(width)))
    target_h = max(1, int(round(height)))
    resized = cv2.resize(np.asarray(mask, dtype=np.float32), (target_w, target_h), interpolation=cv2.INTER_LINEAR)
    return np.clip(resized.reshape(target_h, target_w), 0.0, 1.0)


def _sigmoid(values: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(values, -50.0, 50.0)))


class OutputDecoder:
    """Turn raw output tensors of one (tile, model) call into :class:`RawCandidate` values."""

    def __init__(
        self,
        tile_size: int,
        *,
        class_names: Sequence[str] = ROOM_CLASS_NAMES,
        coordinate_mode: str = "pixels",
        fallback_confidence: float = FALLBACK_CONFIDENCE,
    ):
        if coordinate_mode not in COORDINATE_MODES:
            raise ValueError(f"coordinate_mode must be one of {COORDINATE_MODES}, got '{coordinate_mode}'.")
        self.tile_size = int(tile_size)
        self.class_names = tuple(class_names)
        self.coordinate_mode = coordinate_mode
        self.fallback_confidence = float(fallback_confidence)

    @staticmethod
    def detect_layout(shape: Sequence[int]) -> str:
        """Return ``"rows"`` or ``"columns"`` for a ``[1, A, B]`` (or ``[A, B]``) shape."""
        dims = list(shape)
        if len(dims) == 2:
            dims = [1] + dims
        if len(dims) != 3:
            raise DecodeError(f"Unsupported output rank {len(shape)} (shape {list(shape)}).")
        return "rows" if dims[1] > dims[2] else "columns"

    def decode(
        self,
        outputs: Any,
        *,
        confidence_threshold: float,
        weight: float = 1.0,
        coordinate_mode: Optional[str] = None,
    ) -> List[RawCandidate]:
        """Decode one call's outputs; ``coordinate_mode`` overrides the decoder default for this model."""
        mode = coordinate_mode or self.coordinate_mode
        if mode not in COORDINATE_MODES:
            raise ValueError(f"coordinate_mode must be one of {COORDINATE_MODES}, got '{mode}'.")
        if isinstance(outputs, (np.ndarray, OutputTensor)):
            outputs = [outputs]
        if outputs is None or len(outputs) == 0:
            raise DecodeError("Model returned no output tensors.")

        detections = as_array(outputs[0])
        layout = self.detect_layout(detections.shape)
        if detections.ndim == 2:
            detections = detections[np.newaxis, ...]
        if detections.shape[0] < 1:
            raise DecodeError(f"Output tensor has an empty batch dimension (shape {list(detections.shape)}).")

        table = detections[0] if layout == "rows" else detections[0].T
        num_candidates, num_features = table.shape

        mask_kind, mask_grid = None, None
        if len(outputs) > 1 and outputs[1] is not None:
            mask_kind, mask_grid = self._mask_source(as_array(outputs[1]), num_candidates, num_features)
        coeff_count = mask_grid.shape[0] if mask_kind == "prototype" else 0

        if layout == "rows":
            scored = self._score_rows(table, coeff_count)
        else:
            scored = self._score_columns(table)
        if scored is None:
            logger.debug("Skipping %s output with only %d features per candidate.", layout, num_features)
            return []
        boxes, confidences, class_ids = scored

        confidences = weighted_confidence(confidences, weight)
        valid = (
            np.isfinite(boxes).all(axis=1)
            & np.isfinite(confidences)
            & (confidences >= confidence_threshold)
        )
        indices = np.flatnonzero(valid)
        if indices.size == 0:
            return []

        boxes = boxes.astype(np.float64)
        if mode == "normalized":
            boxes = boxes * float(self.tile_size)

        candidates: List[RawCandidate] = []
        for idx in indices:
            cx, cy, w, h = (float(v) for v in boxes[idx])
            mask = None
            if mask_kind == "per_candidate":
                mask = normalize_mask(mask_grid[idx])
            elif mask_kind == "prototype":
                mask = self._prototype_mask(table[idx, num_features - coeff_count:], mask_grid, (cx, cy, w, h))
            class_id = int(class_ids[idx])
            candidates.append(
                RawCandidate(
                    cx=cx,
                    cy=cy,
                    width=w,
                    height=h,
                    confidence=float(confidences[idx]),
                    class_id=class_id,
                    label=label_for_class(class_id, self.class_names),
                    mask=mask,
                )
            )

        logger.debug(
            "Decoded %d/%d candidates (%s layout, %d features).",
            len(candidates),
            num_candidates,
            layout,
            num_features,
        )
        return candidates

    def _score_rows(
        self, table: np.ndarray, coeff_count: int
    ) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
        num_features = table.shape[1]
        if num_features < 5:
            return None
        boxes = table[:, :4]
        objectness = table[:, 4].astype(np.float64)
        class_scores = table[:, 5:num_features - coeff_count] if coeff_count else table[:, 5:]
        if class_scores.shape[1] == 0:
            return boxes, objectness, np.zeros(table.shape[0], dtype=np.int64)

        filled = np.where(np.isnan(class_scores), -np.inf, class_scores)
        class_ids = np.argmax(filled, axis=1)
        best = filled[np.arange(table.shape[0]), class_ids].astype(np.float64)
        return boxes, objectness * best, class_ids

    def _score_columns(self, table: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
        num_features = table.shape[1]
        if num_features < 4:
            return None
        boxes = table[:, :4]
        if num_features >= 5:
            confidences = table[:, 4].astype(np.float64)
        else:
            confidences = np.full(table.shape[0], self.fallback_confidence, dtype=np.float64)
        return boxes, confidences, np.zeros(table.shape[0], dtype=np.int64)

    @staticmethod
    def _mask_source(
        grid: np.ndarray, num_candidates: int, num_features: int
    ) -> Tuple[Optional[str], Optional[np.ndarray]]:
        if grid.ndim == 4 and grid.shape[0] == 1:
            grid = grid[0]
        if grid.ndim != 3:
            logger.debug("Ignoring secondary output with shape %s.", list(grid.shape))
            return None, None
        if grid.shape[0] == num_candidates:
            return "per_candidate", grid
        if 0 < grid.shape[0] <= num_features - 5:
            return "prototype", grid
        logger.debug("Secondary output %s does not match %d candidates.", list(grid.shape), num_candidates)
        return None, None

    def _prototype_mask(
        self,
        coefficients: np.ndarray,
        prototypes: np.ndarray,
        box: Tuple[float, float, float, float],
    ) -> Optional[np.ndarray]:
        channels, mask_h, mask_w = prototypes.shape
        coeffs = np.nan_to_num(np.asarray(coefficients, dtype=np.float32))
        combined = _sigmoid(coeffs @ prototypes.reshape(channels, -1)).reshape(mask_h, mask_w)

        cx, cy, w, h = box
        size = float(self.tile_size)
        x0 = int(np.clip(np.floor((cx - w / 2) * mask_w / size), 0, mask_w))
        x1 = int(np.clip(np.ceil((cx + w / 2) * mask_w / size), 0, mask_w))
        y0 = int(np.clip(np.floor((cy - h / 2) * mask_h / size), 0, mask_h))
        y1 = int(np.clip(np.ceil((cy + h / 2) * mask_h / size), 0, mask_h))
        if x1 <= x0 or y1 <= y0:
            return None
        return normalize_mask(combined[y0:y1, x0:x1])
