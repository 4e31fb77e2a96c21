import numpy as np


def compute_iou(box1: np.ndarray, box2: np.ndarray) -> float:
    """Return IoU between two boxes in [x1, y1, x2, y2] format."""
    box1 = np.asarray(box1, dtype=np.float64)
    box2 = np.asarray(box2, dtype=np.float64)

    inter_w = min(box1[2], box2[2]) - max(box1[0], box2[0])
    inter_h = min(box1[3], box2[3]) - max(box1[1], box2[1])
    if inter_w <= 0.0 or inter_h <= 0.0:
        return 0.0
    inter_area = inter_w * inter_h

    area1 = max(0.0, box1[2] - box1[0]) * max(0.0, box1[3] - box1[1])
    area2 = max(0.0, box2[2] - box2[0]) * max(0.0, box2[3] - box2[1])
    union = area1 + area2 - inter_area
    if union <= 0.0:
        return 0.0
    return float(min(1.0, inter_area / union))


def pairwise_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """IoU of ``box`` against every row of ``boxes`` (all [x1, y1, x2, y2])."""
    box = np.asarray(box, dtype=np.float64)
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.float64)

    inter_w = np.minimum(box[2], boxes[:, 2]) - np.maximum(box[0], boxes[:, 0])
    inter_h = np.minimum(box[3], boxes[:, 3]) - np.maximum(box[1], boxes[:, 1])
    overlapping = (inter_w > 0.0) & (inter_h > 0.0)
    inter_area = np.where(overlapping, inter_w * inter_h, 0.0)

    area = max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])
    areas = np.maximum(0.0, boxes[:, 2] - boxes[:, 0]) * np.maximum(0.0, boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter_area

    ious = np.zeros(boxes.shape[0], dtype=np.float64)
    valid = overlapping & (union > 0.0)
    ious[valid] = inter_area[valid] / union[valid]
    return np.minimum(ious, 1.0)


def prepare_inputs(
    boxes: np.ndarray | list[list[float]] | list[float],
    scores: np.ndarray | list[float],
) -> tuple[np.ndarray, np.ndarray]:
    """Convert inputs to contiguous float64 arrays with consistent lengths."""
    boxes_arr = np.asarray(boxes, dtype=np.float64)
    scores_arr = np.asarray(scores, dtype=np.float64).reshape(-1)

    if boxes_arr.size == 0 or scores_arr.size == 0:
        return np.empty((0, 4), dtype=np.float64), np.empty((0,), dtype=np.float64)

    if boxes_arr.ndim == 1:
        if boxes_arr.size % 4 != 0:
            raise ValueError("Boxes array must contain coordinates in multiples of 4.")
        boxes_arr = boxes_arr.reshape(-1, 4)
    elif boxes_arr.shape[-1] != 4:
        boxes_arr = boxes_arr.reshape(-1, 4)

    if boxes_arr.shape[0] != scores_arr.shape[0]:
        raise ValueError(
            f"Got {boxes_arr.shape[0]} boxes but {scores_arr.shape[0]} scores."
        )

    return np.ascontiguousarray(boxes_arr), np.ascontiguousarray(scores_arr)
