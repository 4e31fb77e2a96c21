import unittest

import numpy as np
from PIL import Image

from room_pipeline.errors import ConfigurationError, TileGenerationError
from room_pipeline.tiling import (
    as_rgb_array,
    build_tiles,
    covered_area,
    plan_single_tile,
    plan_tiles,
    processing_bounds,
    to_input_tensor,
)

IMAGE_SIZES = [(1, 1), (100, 57), (300, 129), (640, 640), (641, 700), (1280, 1280), (1300, 999)]
TILE_PARAMS = [(128, 0), (128, 33), (128, 100), (640, 64), (640, 65), (640, 320)]


def claim_counts(tiles, width: int, height: int) -> np.ndarray:
    counts = np.zeros((height, width), dtype=np.int32)
    for tile in tiles:
        region = processing_bounds(tile).to_global(tile.offset_x, tile.offset_y)
        counts[region.top:region.bottom, region.left:region.right] += 1
    return counts


class PlanTilesTests(unittest.TestCase):
    def test_large_square_image_uses_four_tiles(self) -> None:
        tiles = plan_tiles(1280, 1280, 640, 64)

        self.assertEqual(len(tiles), 4)
        self.assertEqual(
            [(t.offset_x, t.offset_y) for t in tiles],
            [(0, 0), (576, 0), (0, 576), (576, 576)],
        )
        self.assertEqual([t.index for t in tiles], [0, 1, 2, 3])
        self.assertTrue(covered_area(tiles).all())

        last = tiles[-1]
        self.assertEqual((last.requested_width, last.requested_height), (704, 704))
        self.assertAlmostEqual(last.scale_x, 1.1)
        self.assertAlmostEqual(tiles[0].scale_x, 1.0)

    def test_processing_bounds_split_overlap(self) -> None:
        tiles = plan_tiles(1280, 1280, 640, 64)

        first = processing_bounds(tiles[0])
        second = processing_bounds(tiles[1])
        self.assertEqual((first.left, first.width), (0, 608))
        self.assertEqual((second.left, second.width), (32, 672))
        self.assertFalse(first.contains(608, 10))
        self.assertTrue(second.contains(32, 10))

    def test_thin_strip_kept_without_merging(self) -> None:
        tiles = plan_tiles(1280, 500, 640, 64, merge_thin_edges=False)

        self.assertEqual([t.offset_x for t in tiles], [0, 576, 1152])
        self.assertEqual(tiles[-1].requested_width, 128)
        self.assertEqual(tiles[-1].scale_x, 1.0)

    def test_coverage_and_single_claim(self) -> None:
        for tile_size, overlap in TILE_PARAMS:
            for width, height in IMAGE_SIZES:
                for merge in (True, False):
                    with self.subTest(tile_size=tile_size, overlap=overlap, size=(width, height), merge=merge):
                        tiles = plan_tiles(width, height, tile_size, overlap, merge_thin_edges=merge)
                        coverage = covered_area(tiles)
                        self.assertEqual(coverage.shape, (height, width))
                        self.assertTrue(coverage.all())
                        self.assertTrue((claim_counts(tiles, width, height) == 1).all())
                        for tile in tiles:
                            bounds = processing_bounds(tile)
                            self.assertGreaterEqual(bounds.left, 0)
                            self.assertLessEqual(bounds.right, tile.requested_width)
                            self.assertLessEqual(bounds.bottom, tile.requested_height)

    def test_row_major_order(self) -> None:
        tiles = plan_tiles(2000, 1300, 640, 64)
        keys = [(t.row, t.column) for t in tiles]
        self.assertEqual(keys, sorted(keys))

        first = processing_bounds(tiles[0])
        last = processing_bounds(tiles[-1])
        self.assertEqual((first.left, first.top), (0, 0))
        self.assertEqual((last.right, last.bottom), (tiles[-1].requested_width, tiles[-1].requested_height))

    def test_small_image_single_padded_tile(self) -> None:
        tiles = plan_tiles(100, 50, 640, 64)

        self.assertEqual(len(tiles), 1)
        self.assertEqual((tiles[0].requested_width, tiles[0].requested_height), (100, 50))
        self.assertEqual((tiles[0].scale_x, tiles[0].scale_y), (1.0, 1.0))

    def test_invalid_configuration(self) -> None:
        for tile_size, overlap in [(640, 640), (640, 700), (0, 0), (640, -1)]:
            with self.subTest(tile_size=tile_size, overlap=overlap):
                with self.assertRaises(TileGenerationError):
                    plan_tiles(1000, 1000, tile_size, overlap)

        with self.assertRaises(TileGenerationError):
            plan_tiles(0, 100, 640, 64)

    def test_tile_generation_error_is_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            plan_tiles(100, 100, 64, 64)
        with self.assertRaises(ValueError):
            plan_tiles(100, 100, 64, 64)

    def test_single_tile_scales_whole_image(self) -> None:
        tiles = plan_single_tile(3000, 1500, 640)

        self.assertEqual(len(tiles), 1)
        self.assertAlmostEqual(tiles[0].scale_x, 3000 / 640)
        self.assertAlmostEqual(tiles[0].scale_y, 1500 / 640)
        self.assertEqual(processing_bounds(tiles[0]).width, 3000)


class BuildTilesTests(unittest.TestCase):
    def test_padding_is_white(self) -> None:
        image = np.zeros((50, 100, 3), dtype=np.uint8)

        tiles = build_tiles(image, 640, 64)

        self.assertEqual(len(tiles), 1)
        pixels = tiles[0].tile_image
        self.assertEqual(pixels.shape, (640, 640, 3))
        self.assertTrue((pixels[:50, :100] == 0).all())
        self.assertTrue((pixels[50:, :] == 255).all())
        self.assertTrue((pixels[:, 100:] == 255).all())

    def test_merged_tile_is_resized_to_model_input(self) -> None:
        image = np.full((1280, 1280, 3), 128, dtype=np.uint8)

        tiles = build_tiles(image, 640, 64)

        self.assertEqual(len(tiles), 4)
        for tile in tiles:
            self.assertEqual(tile.tile_image.shape, (640, 640, 3))
            self.assertTrue((tile.tile_image == 128).all())

    def test_single_mode(self) -> None:
        image = np.zeros((300, 900, 3), dtype=np.uint8)

        tiles = build_tiles(image, 640, 64, mode="single")

        self.assertEqual(len(tiles), 1)
        self.assertEqual(tiles[0].tile_image.shape, (640, 640, 3))
        self.assertAlmostEqual(tiles[0].scale_x, 900 / 640)

    def test_unknown_mode(self) -> None:
        with self.assertRaises(TileGenerationError):
            build_tiles(np.zeros((10, 10, 3), dtype=np.uint8), 640, 64, mode="mosaic")

    def test_input_tensor(self) -> None:
        tile = np.full((64, 64, 3), 255, dtype=np.uint8)

        tensor = to_input_tensor(tile)

        self.assertEqual(tensor.shape, (1, 64, 64, 3))
        self.assertEqual(tensor.dtype, np.float32)
        self.assertAlmostEqual(float(tensor.max()), 1.0)


class RgbConversionTests(unittest.TestCase):
    def test_grayscale_and_rgba(self) -> None:
        gray = np.full((4, 5), 200, dtype=np.uint8)
        self.assertEqual(as_rgb_array(gray).shape, (4, 5, 3))

        rgba = np.zeros((4, 5, 4), dtype=np.uint8)
        self.assertEqual(as_rgb_array(rgba).shape, (4, 5, 3))

    def test_pil_image(self) -> None:
        image = Image.new("L", (8, 6), color=10)
        array = as_rgb_array(image)
        self.assertEqual(array.shape, (6, 8, 3))
        self.assertEqual(array.dtype, np.uint8)

    def test_float_image_is_rescaled(self) -> None:
        image = np.full((2, 2, 3), 0.5, dtype=np.float32)
        self.assertEqual(int(as_rgb_array(image)[0, 0, 0]), 127)

    def test_bad_shape(self) -> None:
        with self.assertRaises(ValueError):
            as_rgb_array(np.zeros((2, 2, 2)))


if __name__ == "__main__":
    unittest.main()
