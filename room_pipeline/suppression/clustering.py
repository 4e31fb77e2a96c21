import numpy as np

from .iou import pairwise_iou, prepare_inputs


def weighted_clusters(
    boxes: np.ndarray | list[list[float]],
    scores: np.ndarray | list[float],
    grouping_thresh: float = 0.5,
) -> list[np.ndarray]:
    """Greedy single-pass grouping by IoU against the cluster seed.

    Seeds are taken in input order (not by score): the first unclustered box
    opens a cluster and absorbs every later unclustered box whose IoU with the
    seed is at least ``grouping_thresh``. Returns the member indices of each
    cluster, seed first.
    """
    boxes_arr, scores_arr = prepare_inputs(boxes, scores)
    if boxes_arr.size == 0:
        return []

    count = boxes_arr.shape[0]
    used = np.zeros(count, dtype=bool)
    clusters: list[np.ndarray] = []

    for seed in range(count):
        if used[seed]:
            continue
        used[seed] = True

        candidates = np.flatnonzero(~used)
        members = [seed]
        if candidates.size:
            ious = pairwise_iou(boxes_arr[seed], boxes_arr[candidates])
            matched = candidates[ious >= grouping_thresh]
            used[matched] = True
            members.extend(int(idx) for idx in matched)

        clusters.append(np.asarray(members, dtype=np.int64))

    return clusters


def merge_cluster(boxes: np.ndarray, scores: np.ndarray) -> tuple[np.ndarray, float]:
    """Confidence-weighted mean box and unweighted mean score of one cluster."""
    cluster_boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    cluster_scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    total = float(cluster_scores.sum())

    if total > 0:
        weights = cluster_scores / total
    else:
        weights = np.full_like(cluster_scores, 1.0 / len(cluster_scores))

    merged_box = np.average(cluster_boxes, axis=0, weights=weights)
    merged_score = float(cluster_scores.mean())
    return merged_box, merged_score
