from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .decoding import resample_mask
from .types import Detection, RawCandidate, TileDescriptor, TileGeometry

logger = logging.getLogger(__name__)

Box = Tuple[float, float, float, float]


def clip_box(box: Box, *, width: float, height: float) -> Optional[Box]:
    """Clip a (left, top, width, height) box to the image; None when nothing is left."""
    left, top, box_w, box_h = box
    x1 = max(0.0, min(left, float(width)))
    y1 = max(0.0, min(top, float(height)))
    x2 = max(0.0, min(left + box_w, float(width)))
    y2 = max(0.0, min(top + box_h, float(height)))
    if x2 <= x1 or y2 <= y1:
        return None
    return x1, y1, x2 - x1, y2 - y1


def _crop_mask(mask: np.ndarray, full: Box, clipped: Box) -> np.ndarray:
    """Resample ``mask`` to the full box, then keep the part that survived clipping."""
    resized = resample_mask(mask, full[2], full[3])
    x0 = int(round(clipped[0] - full[0]))
    y0 = int(round(clipped[1] - full[1]))
    x1 = x0 + max(1, int(round(clipped[2])))
    y1 = y0 + max(1, int(round(clipped[3])))
    cropped = resized[max(0, y0):y1, max(0, x0):x1]
    if cropped.size == 0:
        return resample_mask(mask, clipped[2], clipped[3])
    if cropped.shape != (max(1, int(round(clipped[3]))), max(1, int(round(clipped[2])))):
        return resample_mask(cropped, clipped[2], clipped[3])
    return cropped


class CoordinateMapper:
    """Project tile-local candidates into full-image pixel coordinates."""

    def __init__(self, image_width: int, image_height: int):
        self.image_width = int(image_width)
        self.image_height = int(image_height)

    @staticmethod
    def map_box(tile: TileGeometry, candidate: RawCandidate) -> Optional[Box]:
        """Scale and offset a centre-based box; None for degenerate sizes."""
        width = candidate.width * tile.scale_x
        height = candidate.height * tile.scale_y
        if not width > 0 or not height > 0:
            return None
        left = (candidate.cx - candidate.width / 2) * tile.scale_x + tile.offset_x
        top = (candidate.cy - candidate.height / 2) * tile.scale_y + tile.offset_y
        return left, top, width, height

    @staticmethod
    def is_authoritative(tile: TileGeometry, box: Box) -> bool:
        """True when the box centre lies in the tile's processing bounds."""
        left, top, width, height = box
        local_x = left + width / 2 - tile.offset_x
        local_y = top + height / 2 - tile.offset_y
        return tile.bounds.contains(local_x, local_y)

    def map_candidates(
        self,
        tile: TileGeometry | TileDescriptor,
        candidates: Sequence[RawCandidate],
    ) -> List[Detection]:
        geometry = tile.geometry if isinstance(tile, TileDescriptor) else tile
        mapped: List[Detection] = []
        degenerate = 0
        foreign = 0

        for candidate in candidates:
            box = self.map_box(geometry, candidate)
            if box is None:
                degenerate += 1
                continue
            if not self.is_authoritative(geometry, box):
                foreign += 1
                continue
            clipped = clip_box(box, width=self.image_width, height=self.image_height)
            if clipped is None:
                degenerate += 1
                continue

            mask = None
            if candidate.mask is not None:
                mask = _crop_mask(candidate.mask, box, clipped)

            mapped.append(
                Detection(
                    left=clipped[0],
                    top=clipped[1],
                    width=clipped[2],
                    height=clipped[3],
                    confidence=candidate.confidence,
                    class_id=candidate.class_id,
                    label=candidate.label,
                    mask=mask,
                )
            )

        if degenerate or foreign:
            logger.debug(
                "Tile %d: dropped %d degenerate and %d out-of-bounds candidates.",
                geometry.index,
                degenerate,
                foreign,
            )
        return mapped
