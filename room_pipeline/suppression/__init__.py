"""Box clustering and suppression kernels operating on numpy arrays."""

from .clustering import merge_cluster, weighted_clusters
from .iou import compute_iou, pairwise_iou
from .nms import nms

__all__ = [
    "compute_iou",
    "pairwise_iou",
    "weighted_clusters",
    "merge_cluster",
    "nms",
]
