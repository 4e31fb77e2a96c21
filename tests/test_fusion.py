import unittest

import numpy as np

from room_pipeline.fusion import cluster_detections, fuse_detections, suppress_detections
from room_pipeline.suppression import compute_iou
from room_pipeline.types import Detection, FusionParams


def box(x1: float, y1: float, x2: float, y2: float, confidence: float, **kwargs) -> Detection:
    return Detection(left=x1, top=y1, width=x2 - x1, height=y2 - y1, confidence=confidence, **kwargs)


class FuseDetectionsTests(unittest.TestCase):
    def test_two_overlapping_candidates(self) -> None:
        candidates = [box(0, 0, 100, 100, 0.9), box(0, 0, 100, 75, 0.6)]

        [merged] = fuse_detections(candidates, FusionParams())

        self.assertTrue(np.allclose(merged.to_xyxy(), [0.0, 0.0, 100.0, 90.0]))
        self.assertAlmostEqual(merged.confidence, 0.75)

    def test_nested_offset_candidates_are_merged(self) -> None:
        high, low = box(10, 10, 50, 50, 0.9), box(15, 15, 50, 50, 0.6)
        self.assertAlmostEqual(compute_iou(high.to_xyxy(), low.to_xyxy()), 1225 / 1600)

        [merged] = fuse_detections([high, low])

        self.assertTrue(np.allclose(merged.to_xyxy(), [12.0, 12.0, 50.0, 50.0]))
        self.assertAlmostEqual(merged.confidence, 0.75)

    def test_identical_triple(self) -> None:
        candidates = [box(10, 10, 60, 40, conf) for conf in (0.9, 0.6, 0.3)]

        [merged] = fuse_detections(candidates)

        self.assertTrue(np.allclose(merged.to_xyxy(), [10.0, 10.0, 60.0, 40.0]))
        self.assertAlmostEqual(merged.confidence, 0.6)

    def test_nms_stage_removes_moderate_overlap(self) -> None:
        # IoU 0.47: below the grouping threshold, above the NMS threshold.
        candidates = [box(0, 0, 100, 47, 0.8), box(0, 0, 100, 100, 0.9)]

        result = fuse_detections(candidates)

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].to_xyxy(), [0.0, 0.0, 100.0, 100.0])

    def test_disjoint_rooms_survive_in_confidence_order(self) -> None:
        candidates = [box(0, 0, 50, 50, 0.4), box(100, 100, 150, 150, 0.9), box(200, 0, 260, 40, 0.7)]

        result = fuse_detections(candidates)

        self.assertEqual([det.confidence for det in result], [0.9, 0.7, 0.4])

    def test_scale_invariance(self) -> None:
        rng = np.random.default_rng(11)
        corners = rng.uniform(0, 300, size=(25, 2))
        sizes = rng.uniform(20, 120, size=(25, 2))
        scores = rng.uniform(0.1, 1.0, size=25)
        candidates = [
            box(c[0], c[1], c[0] + s[0], c[1] + s[1], float(p)) for c, s, p in zip(corners, sizes, scores)
        ]
        scaled = [
            Detection(d.left * 3.0, d.top * 3.0, d.width * 3.0, d.height * 3.0, d.confidence) for d in candidates
        ]

        base = fuse_detections(candidates)
        bigger = fuse_detections(scaled)

        self.assertEqual(len(base), len(bigger))
        for small, large in zip(base, bigger):
            self.assertTrue(np.allclose(np.array(small.to_xyxy()) * 3.0, large.to_xyxy()))
            self.assertAlmostEqual(small.confidence, large.confidence)

    def test_confidence_is_clamped(self) -> None:
        [det] = fuse_detections([box(0, 0, 10, 10, 1.4)])
        self.assertEqual(det.confidence, 1.0)

    def test_boxes_are_clipped_to_image(self) -> None:
        [det] = fuse_detections([box(-10, -5, 50, 40, 0.9)], image_width=30, image_height=30)
        self.assertEqual(det.to_xyxy(), [0.0, 0.0, 30.0, 30.0])

    def test_empty_input(self) -> None:
        self.assertEqual(fuse_detections([]), [])

    def test_first_member_mask_is_propagated(self) -> None:
        candidates = [
            box(0, 0, 100, 100, 0.9),
            box(0, 0, 100, 75, 0.6, mask=np.ones((5, 5), dtype=np.float32)),
        ]

        [merged] = fuse_detections(candidates)

        self.assertTrue(merged.is_segmented)
        self.assertEqual(merged.mask.shape, (90, 100))


class StageTests(unittest.TestCase):
    def test_cluster_keeps_singletons_untouched(self) -> None:
        single = box(0, 0, 10, 10, 0.5, class_id=3, label="kitchen")
        self.assertEqual(cluster_detections([single]), [single])

    def test_cluster_keeps_seed_label(self) -> None:
        candidates = [
            box(0, 0, 100, 100, 0.5, class_id=3, label="kitchen"),
            box(0, 0, 100, 95, 0.9, class_id=4, label="bathroom"),
        ]

        [merged] = cluster_detections(candidates, grouping_threshold=0.5)

        self.assertEqual((merged.class_id, merged.label), (3, "kitchen"))

    def test_suppress_orders_by_confidence(self) -> None:
        candidates = [box(0, 0, 10, 10, 0.2), box(0, 0, 10, 10, 0.8)]
        [kept] = suppress_detections(candidates, nms_threshold=0.45)
        self.assertEqual(kept.confidence, 0.8)


if __name__ == "__main__":
    unittest.main()
