import unittest
from pathlib import Path

from config_detection import ENABLED_MODELS, TILE_OVERLAP, TILE_SIZE, load_config
from room_pipeline import ConfigurationError, PipelineSettings


class LoadConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = load_config(Path("/tmp/project"))

        self.assertIsInstance(settings, PipelineSettings)
        self.assertEqual((settings.tile_size, settings.overlap), (TILE_SIZE, TILE_OVERLAP))
        self.assertEqual(len(settings.models), len(ENABLED_MODELS))
        self.assertEqual(settings.models[0].path.parent, Path("/tmp/project") / "model_checkpoints")

    def test_overrides(self) -> None:
        settings = load_config(Path("/tmp/project"), tile_size=1024, overlap=None, mode="single")

        self.assertEqual(settings.tile_size, 1024)
        self.assertEqual(settings.overlap, TILE_OVERLAP)
        self.assertEqual(settings.mode, "single")

    def test_invalid_override(self) -> None:
        with self.assertRaises(ConfigurationError):
            load_config(overlap=TILE_SIZE)

    def test_fusion_params(self) -> None:
        params = load_config().fusion
        self.assertEqual((params.grouping_threshold, params.nms_threshold), (0.5, 0.45))


class CliParsingTests(unittest.TestCase):
    def test_model_spec(self) -> None:
        from run_pipeline import parse_model_spec

        spec = parse_model_spec("rooms:yolo:weights/rooms.pt:0.7")
        self.assertEqual((spec.name, spec.engine, spec.path, spec.weight), ("rooms", "yolo", Path("weights/rooms.pt"), 0.7))

        spec = parse_model_spec("rooms:jit:C:/models/rooms.torchscript")
        self.assertEqual(spec.path, Path("C:/models/rooms.torchscript"))
        self.assertEqual(spec.weight, 1.0)

    def test_missing_image_exits_with_configuration_code(self) -> None:
        from run_pipeline import main

        self.assertEqual(main(["--image", "/nonexistent/plan.png", "--model", "fake:yolo:missing.pt"]), 2)


if __name__ == "__main__":
    unittest.main()
