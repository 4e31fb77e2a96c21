"""
Tile planning for large floor plan images.

Tiles are laid out row-major with a stride of ``tile_size - overlap``. Every
tile owns an authoritative :class:`ProcessingBounds` region; the regions of a
row (or column) of tiles partition the image, so each pixel is claimed by
exactly one tile regardless of how many tiles see it.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import TileGenerationError
from .types import ProcessingBounds, TileDescriptor, TileGeometry

logger = logging.getLogger(__name__)

TILE_MODES = ("tiled", "single")
DEFAULT_PAD_VALUE = 255

# (start, length, authoritative_start, authoritative_end) along one axis.
_Span = Tuple[int, int, int, int]


def validate_tiling(image_width: int, image_height: int, tile_size: int, overlap: int) -> None:
    if int(tile_size) != tile_size or tile_size <= 0:
        raise TileGenerationError(f"tile_size must be a positive integer, got {tile_size!r}.")
    if int(overlap) != overlap or overlap < 0:
        raise TileGenerationError(f"overlap must be a non-negative integer, got {overlap!r}.")
    if overlap >= tile_size:
        raise TileGenerationError(
            f"overlap ({overlap}) must be smaller than tile_size ({tile_size})."
        )
    if image_width <= 0 or image_height <= 0:
        raise TileGenerationError(f"Image size must be positive, got {image_width}x{image_height}.")


def _axis_spans(extent: int, tile_size: int, overlap: int, merge_thin_edges: bool) -> List[_Span]:
    step = tile_size - overlap
    starts = list(range(0, extent, step))
    lengths = [min(tile_size, extent - start) for start in starts]

    # A trailing strip narrower than half a tile is folded into its neighbour,
    # which then reaches the image edge and is resized down to tile_size.
    if merge_thin_edges and len(starts) > 1 and lengths[-1] < tile_size // 2:
        starts.pop()
        lengths.pop()
        lengths[-1] = extent - starts[-1]

    boundaries = [0]
    for nxt in range(1, len(starts)):
        next_end = starts[nxt] + lengths[nxt]
        boundaries.append(min(starts[nxt] + overlap // 2, next_end))
    boundaries.append(extent)

    return [
        (start, length, boundaries[i], boundaries[i + 1])
        for i, (start, length) in enumerate(zip(starts, lengths))
    ]


def _axis_scale(length: int, tile_size: int) -> float:
    return length / tile_size if length > tile_size else 1.0


def plan_tiles(
    image_width: int,
    image_height: int,
    tile_size: int,
    overlap: int,
    *,
    merge_thin_edges: bool = True,
) -> List[TileGeometry]:
    """Compute the row-major grid of tiles covering the image."""
    validate_tiling(image_width, image_height, tile_size, overlap)

    columns = _axis_spans(image_width, tile_size, overlap, merge_thin_edges)
    rows = _axis_spans(image_height, tile_size, overlap, merge_thin_edges)

    tiles: List[TileGeometry] = []
    for row_idx, (y, height, auth_y0, auth_y1) in enumerate(rows):
        for col_idx, (x, width, auth_x0, auth_x1) in enumerate(columns):
            tiles.append(
                TileGeometry(
                    index=len(tiles),
                    row=row_idx,
                    column=col_idx,
                    offset_x=x,
                    offset_y=y,
                    requested_width=width,
                    requested_height=height,
                    tile_size=tile_size,
                    scale_x=_axis_scale(width, tile_size),
                    scale_y=_axis_scale(height, tile_size),
                    bounds=ProcessingBounds(
                        left=auth_x0 - x,
                        top=auth_y0 - y,
                        width=auth_x1 - auth_x0,
                        height=auth_y1 - auth_y0,
                    ),
                )
            )
    return tiles


def plan_single_tile(image_width: int, image_height: int, tile_size: int) -> List[TileGeometry]:
    """One window over the whole image, resized (anisotropically) to the model input size."""
    validate_tiling(image_width, image_height, tile_size, 0)
    return [
        TileGeometry(
            index=0,
            row=0,
            column=0,
            offset_x=0,
            offset_y=0,
            requested_width=image_width,
            requested_height=image_height,
            tile_size=tile_size,
            scale_x=image_width / tile_size,
            scale_y=image_height / tile_size,
            bounds=ProcessingBounds(left=0, top=0, width=image_width, height=image_height),
        )
    ]


def processing_bounds(tile: TileGeometry | TileDescriptor) -> ProcessingBounds:
    """Authoritative region of ``tile`` in tile-local source pixels."""
    geometry = tile.geometry if isinstance(tile, TileDescriptor) else tile
    return geometry.bounds


def as_rgb_array(image) -> np.ndarray:
    """Return ``image`` (numpy array or PIL image) as a contiguous uint8 RGB array."""
    if isinstance(image, Image.Image):
        return np.asarray(image.convert("RGB"), dtype=np.uint8)

    array = np.asarray(image)
    if array.ndim == 2:
        array = cv2.cvtColor(array.astype(np.uint8), cv2.COLOR_GRAY2RGB)
    elif array.ndim == 3 and array.shape[2] == 4:
        array = array[:, :, :3]
    elif array.ndim != 3 or array.shape[2] != 3:
        raise ValueError(f"Expected an HxW, HxWx3 or HxWx4 image, got shape {array.shape}.")

    if array.dtype != np.uint8:
        values = array.astype(np.float32)
        if values.size and float(values.max()) <= 1.0:
            values = values * 255.0
        array = np.clip(values, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(array)


def extract_tile_image(image: np.ndarray, tile: TileGeometry, pad_value: int = DEFAULT_PAD_VALUE) -> np.ndarray:
    """Crop the tile from ``image``, resize oversized axes, and pad to ``tile_size``."""
    size = tile.tile_size
    crop = image[
        tile.offset_y:tile.offset_y + tile.requested_height,
        tile.offset_x:tile.offset_x + tile.requested_width,
    ]
    target_w = max(1, int(round(tile.requested_width / tile.scale_x)))
    target_h = max(1, int(round(tile.requested_height / tile.scale_y)))
    if (target_w, target_h) != (crop.shape[1], crop.shape[0]):
        shrinking = target_w * target_h < crop.shape[1] * crop.shape[0]
        crop = cv2.resize(
            crop,
            (target_w, target_h),
            interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR,
        )

    if crop.shape[0] == size and crop.shape[1] == size:
        return np.ascontiguousarray(crop)

    canvas = np.full((size, size, 3), pad_value, dtype=np.uint8)
    canvas[: crop.shape[0], : crop.shape[1]] = crop
    return canvas


def build_tiles(
    image,
    tile_size: int,
    overlap: int,
    *,
    mode: str = "tiled",
    merge_thin_edges: bool = True,
    pad_value: int = DEFAULT_PAD_VALUE,
) -> List[TileDescriptor]:
    """Plan the tiles for ``image`` and cut the pixel buffer of each one."""
    if mode not in TILE_MODES:
        raise TileGenerationError(f"Unknown tiling mode '{mode}'. Expected one of {TILE_MODES}.")

    rgb = as_rgb_array(image)
    height, width = rgb.shape[:2]
    if mode == "single":
        geometries = plan_single_tile(width, height, tile_size)
    else:
        geometries = plan_tiles(width, height, tile_size, overlap, merge_thin_edges=merge_thin_edges)

    tiles: List[TileDescriptor] = []
    for geometry in geometries:
        tiles.append(TileDescriptor(geometry=geometry, tile_image=extract_tile_image(rgb, geometry, pad_value)))
        logger.debug(
            "Created tile %d: %dx%d at (%d, %d)",
            geometry.index,
            geometry.requested_width,
            geometry.requested_height,
            geometry.offset_x,
            geometry.offset_y,
        )
    return tiles


def to_input_tensor(tile_image: np.ndarray) -> np.ndarray:
    """Normalise a tile to a float32 (1, S, S, 3) tensor with values in [0, 1]."""
    tensor = np.asarray(tile_image, dtype=np.float32) / 255.0
    return tensor[np.newaxis, ...]


def covered_area(tiles: Sequence[TileGeometry]) -> np.ndarray:
    """Boolean coverage map of the requested tile rectangles (debugging aid)."""
    if not tiles:
        return np.zeros((0, 0), dtype=bool)
    width = max(t.offset_x + t.requested_width for t in tiles)
    height = max(t.offset_y + t.requested_height for t in tiles)
    coverage = np.zeros((height, width), dtype=bool)
    for t in tiles:
        coverage[t.offset_y:t.offset_y + t.requested_height, t.offset_x:t.offset_x + t.requested_width] = True
    return coverage
