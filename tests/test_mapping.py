import unittest

import numpy as np

from room_pipeline.mapping import CoordinateMapper, clip_box
from room_pipeline.tiling import plan_single_tile, plan_tiles
from room_pipeline.types import RawCandidate


class CoordinateMapperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tiles = plan_tiles(1280, 1280, 640, 64)
        self.mapper = CoordinateMapper(1280, 1280)

    def test_first_tile_is_identity_plus_offset(self) -> None:
        cand = RawCandidate(cx=100.0, cy=100.0, width=50.0, height=40.0, confidence=0.9)

        [det] = self.mapper.map_candidates(self.tiles[0], [cand])

        self.assertEqual((det.left, det.top, det.width, det.height), (75.0, 80.0, 50.0, 40.0))
        self.assertEqual(det.confidence, 0.9)
        self.assertEqual(det.label, "room")

    def test_resized_tile_applies_scale(self) -> None:
        cand = RawCandidate(cx=320.0, cy=100.0, width=50.0, height=40.0, confidence=0.8)

        [det] = self.mapper.map_candidates(self.tiles[1], [cand])

        self.assertAlmostEqual(det.left, (320.0 - 25.0) * 1.1 + 576.0)
        self.assertAlmostEqual(det.width, 55.0)
        self.assertAlmostEqual(det.top, 80.0)
        self.assertAlmostEqual(det.height, 40.0)

    def test_overlap_object_claimed_by_one_tile(self) -> None:
        # The same room centred at global x=620 as seen by two neighbouring tiles.
        from_left = RawCandidate(cx=620.0, cy=100.0, width=60.0, height=60.0, confidence=0.9)
        from_right = RawCandidate(cx=(620.0 - 576.0) / 1.1, cy=100.0, width=60.0 / 1.1, height=60.0, confidence=0.9)

        self.assertEqual(self.mapper.map_candidates(self.tiles[0], [from_left]), [])
        [det] = self.mapper.map_candidates(self.tiles[1], [from_right])
        self.assertAlmostEqual(det.center[0], 620.0)

    def test_degenerate_boxes_are_dropped(self) -> None:
        candidates = [
            RawCandidate(cx=100.0, cy=100.0, width=0.0, height=40.0, confidence=0.9),
            RawCandidate(cx=100.0, cy=100.0, width=10.0, height=-1.0, confidence=0.9),
        ]
        self.assertEqual(self.mapper.map_candidates(self.tiles[0], candidates), [])

    def test_boxes_are_clipped_to_image(self) -> None:
        [tile] = plan_tiles(100, 50, 640, 0)
        mapper = CoordinateMapper(100, 50)
        cand = RawCandidate(
            cx=90.0,
            cy=25.0,
            width=40.0,
            height=10.0,
            confidence=0.7,
            mask=np.ones((4, 4), dtype=np.float32),
        )

        [det] = mapper.map_candidates(tile, [cand])

        self.assertEqual((det.left, det.top, det.width, det.height), (70.0, 20.0, 30.0, 10.0))
        self.assertEqual(det.mask.shape, (10, 30))
        self.assertTrue(np.allclose(det.mask, 1.0))

    def test_single_tile_maps_whole_image(self) -> None:
        [tile] = plan_single_tile(1280, 640, 640)
        mapper = CoordinateMapper(1280, 640)
        cand = RawCandidate(cx=320.0, cy=320.0, width=100.0, height=100.0, confidence=0.9)

        [det] = mapper.map_candidates(tile, [cand])

        self.assertEqual(det.center, (640.0, 320.0))
        self.assertEqual((det.width, det.height), (200.0, 100.0))

    def test_padding_region_produces_nothing(self) -> None:
        [tile] = plan_tiles(100, 50, 640, 0)
        mapper = CoordinateMapper(100, 50)
        cand = RawCandidate(cx=400.0, cy=400.0, width=50.0, height=50.0, confidence=0.9)

        self.assertEqual(mapper.map_candidates(tile, [cand]), [])


class ClipBoxTests(unittest.TestCase):
    def test_inside_box_unchanged(self) -> None:
        self.assertEqual(clip_box((10.0, 10.0, 20.0, 20.0), width=100, height=100), (10.0, 10.0, 20.0, 20.0))

    def test_outside_box_is_none(self) -> None:
        self.assertIsNone(clip_box((150.0, 10.0, 20.0, 20.0), width=100, height=100))


if __name__ == "__main__":
    unittest.main()
