import numpy as np

from .iou import pairwise_iou, prepare_inputs


def nms(
    boxes: np.ndarray | list[list[float]],
    scores: np.ndarray | list[float],
    iou_thresh: float = 0.45,
) -> np.ndarray:
    """Greedy IoU suppression; returns kept indices in descending score order.

    A box is suppressed when its IoU with an already kept box is strictly
    greater than ``iou_thresh``. Equal scores keep their input order.
    """
    boxes_arr, scores_arr = prepare_inputs(boxes, scores)
    if boxes_arr.size == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-scores_arr, kind="stable")
    suppressed = np.zeros(order.size, dtype=bool)
    keep: list[int] = []

    for position, idx in enumerate(order):
        if suppressed[position]:
            continue
        keep.append(int(idx))

        rest = position + 1
        if rest >= order.size:
            break
        ious = pairwise_iou(boxes_arr[idx], boxes_arr[order[rest:]])
        suppressed[rest:] |= ious > iou_thresh

    return np.asarray(keep, dtype=np.int64)
