from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping, Sequence

import cv2
import numpy as np

from .types import ROOM_CLASS_NAMES, Detection

JsonDict = MutableMapping[str, object]

MASK_THRESHOLD = 0.5


def load_json(path: Path) -> JsonDict:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def save_json(data: Mapping[str, object], path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2, ensure_ascii=False)


def mask_to_polygons(det: Detection, threshold: float = MASK_THRESHOLD) -> List[List[float]]:
    """Outer contours of the detection mask as flat [x1, y1, x2, y2, ...] lists in image pixels."""
    if det.mask is None:
        return []
    binary = (np.asarray(det.mask) >= threshold).astype(np.uint8)
    if not binary.any():
        return []

    sx = det.width / binary.shape[1]
    sy = det.height / binary.shape[0]
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    polygons: List[List[float]] = []
    for contour in contours:
        points = contour.reshape(-1, 2).astype(np.float64)
        if points.shape[0] < 3:
            continue
        points[:, 0] = points[:, 0] * sx + det.left
        points[:, 1] = points[:, 1] * sy + det.top
        polygons.append([round(float(v), 2) for v in points.reshape(-1)])
    return polygons


def build_categories(class_names: Sequence[str] = ROOM_CLASS_NAMES) -> List[Dict[str, object]]:
    return [{"id": idx, "name": name, "supercategory": "room"} for idx, name in enumerate(class_names)]


def detections_to_coco(
    detections: Sequence[Detection],
    *,
    file_name: str,
    width: int,
    height: int,
    class_names: Sequence[str] = ROOM_CLASS_NAMES,
) -> JsonDict:
    """COCO-style prediction dataset for one image."""
    annotations: List[Dict[str, object]] = []
    for det in detections:
        annotation: Dict[str, object] = {
            "id": len(annotations),
            "image_id": 0,
            "category_id": int(det.class_id),
            "bbox": [float(det.left), float(det.top), float(det.width), float(det.height)],
            "area": float(det.area),
            "score": float(det.confidence),
            "iscrowd": 0,
        }
        polygons = mask_to_polygons(det)
        if polygons:
            annotation["segmentation"] = polygons
        annotations.append(annotation)

    return {
        "info": {},
        "licenses": [],
        "images": [{"id": 0, "file_name": file_name, "width": int(width), "height": int(height)}],
        "annotations": annotations,
        "categories": build_categories(class_names),
    }


def detections_from_coco(data: Mapping[str, object], class_names: Sequence[str] = ROOM_CLASS_NAMES) -> List[Detection]:
    """Rebuild box-only detections from a dataset written by :func:`detections_to_coco`."""
    names = {int(cat["id"]): str(cat["name"]) for cat in data.get("categories", [])}
    detections: List[Detection] = []
    for ann in data.get("annotations", []):
        x, y, w, h = (float(v) for v in ann["bbox"])
        class_id = int(ann.get("category_id", 0))
        label = names.get(class_id)
        if label is None:
            label = class_names[class_id] if 0 <= class_id < len(class_names) else class_names[0]
        detections.append(
            Detection(
                left=x,
                top=y,
                width=w,
                height=h,
                confidence=float(ann.get("score", 1.0)),
                class_id=class_id,
                label=label,
            )
        )
    return detections
