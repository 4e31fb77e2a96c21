from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from .decoding import resample_mask
from .mapping import clip_box
from .suppression import merge_cluster, nms, weighted_clusters
from .types import Detection, FusionParams

logger = logging.getLogger(__name__)


def _as_arrays(detections: Sequence[Detection]):
    boxes = np.array([det.to_xyxy() for det in detections], dtype=np.float64).reshape(-1, 4)
    scores = np.array([det.confidence for det in detections], dtype=np.float64)
    return boxes, scores


def _first_mask(members: Sequence[Detection]) -> Optional[np.ndarray]:
    for det in members:
        if det.mask is not None:
            return det.mask
    return None


def cluster_detections(
    detections: Sequence[Detection],
    grouping_threshold: float = 0.5,
) -> List[Detection]:
    """
    Merge overlapping candidates into confidence-weighted averages.

    Clusters are seeded in input order, so the caller controls determinism by
    the order of ``detections``. The merged detection keeps the class and
    label of its seed and the first mask found among its members.
    """
    if not detections:
        return []

    boxes, scores = _as_arrays(detections)
    merged: List[Detection] = []
    for indices in weighted_clusters(boxes, scores, grouping_thresh=grouping_threshold):
        members = [detections[int(i)] for i in indices]
        seed = members[0]
        if len(members) == 1:
            merged.append(seed)
            continue

        box, score = merge_cluster(boxes[indices], scores[indices])
        x1, y1, x2, y2 = (float(v) for v in box)
        mask = _first_mask(members)
        if mask is not None:
            mask = resample_mask(mask, x2 - x1, y2 - y1)
        merged.append(
            Detection(
                left=x1,
                top=y1,
                width=x2 - x1,
                height=y2 - y1,
                confidence=score,
                class_id=seed.class_id,
                label=seed.label,
                mask=mask,
            )
        )
    return merged


def suppress_detections(
    detections: Sequence[Detection],
    nms_threshold: float = 0.45,
) -> List[Detection]:
    """Greedy NMS; survivors are returned in descending confidence order."""
    if not detections:
        return []
    boxes, scores = _as_arrays(detections)
    keep = nms(boxes, scores, iou_thresh=nms_threshold)
    return [detections[int(idx)] for idx in keep]


def _finalize(det: Detection, image_width: Optional[int], image_height: Optional[int]) -> Optional[Detection]:
    confidence = min(1.0, det.confidence)
    if image_width is None or image_height is None:
        if confidence == det.confidence:
            return det
        return Detection(det.left, det.top, det.width, det.height, confidence, det.class_id, det.label, det.mask)

    clipped = clip_box((det.left, det.top, det.width, det.height), width=image_width, height=image_height)
    if clipped is None:
        return None
    mask = det.mask
    if mask is not None and (clipped[2], clipped[3]) != (det.width, det.height):
        mask = resample_mask(mask, clipped[2], clipped[3])
    return Detection(
        left=clipped[0],
        top=clipped[1],
        width=clipped[2],
        height=clipped[3],
        confidence=confidence,
        class_id=det.class_id,
        label=det.label,
        mask=mask,
    )


def fuse_detections(
    candidates: Sequence[Detection],
    params: FusionParams | None = None,
    image_width: Optional[int] = None,
    image_height: Optional[int] = None,
) -> List[Detection]:
    """Two-stage fusion: weighted clustering, then NMS over the merged boxes."""
    params = params or FusionParams()
    if not candidates:
        return []

    clustered = cluster_detections(candidates, params.grouping_threshold)
    survivors = suppress_detections(clustered, params.nms_threshold)

    final: List[Detection] = []
    for det in survivors:
        finished = _finalize(det, image_width, image_height)
        if finished is not None:
            final.append(finished)

    logger.debug(
        "Fusion: %d candidates -> %d clusters -> %d detections.",
        len(candidates),
        len(clustered),
        len(final),
    )
    return final
