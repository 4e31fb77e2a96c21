from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

import cv2

from config_detection import PROJECT_ROOT, load_config
from room_pipeline import (
    AllTilesFailedError,
    ConfigurationError,
    ModelSpec,
    RoomDetectionPipeline,
)
from room_pipeline.export import detections_to_coco, save_json
from room_pipeline.orchestrator import build_model_handles

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_model_spec(text: str) -> ModelSpec:
    """Parse ``NAME:ENGINE:PATH[:WEIGHT]``."""
    parts = text.split(":")
    if len(parts) < 3:
        raise argparse.ArgumentTypeError(f"Expected NAME:ENGINE:PATH[:WEIGHT], got '{text}'.")
    weight = 1.0
    if len(parts) > 3:
        try:
            weight = float(parts[-1])
            parts = parts[:-1]
        except ValueError:
            weight = 1.0
    name, engine, path = parts[0], parts[1], ":".join(parts[2:])
    return ModelSpec(name=name, engine=engine, path=Path(path), weight=weight)


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect rooms in a floor plan image",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--image", type=Path, required=True, help="Floor plan image to process")
    parser.add_argument(
        "--model",
        type=parse_model_spec,
        action="append",
        default=None,
        help="Model as NAME:ENGINE:PATH[:WEIGHT]; repeat for an ensemble (defaults to config_detection.py)",
    )
    parser.add_argument("--mode", choices=("tiled", "single", "auto"), default=None)
    parser.add_argument("--tile-size", type=int, default=None)
    parser.add_argument("--overlap", type=int, default=None)
    parser.add_argument("--threshold", type=float, default=None, help="Minimum weighted confidence")
    parser.add_argument("--workers", type=int, default=None, help="Tiles processed in parallel")
    parser.add_argument("--device", type=str, default=None, help="Torch device, e.g. 'cpu' or 'cuda:0'")
    parser.add_argument(
        "--output",
        type=Path,
        default=PROJECT_ROOT / "results" / "detections.json",
        help="COCO JSON output path",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_arguments(argv)
    start_time = time.time()

    try:
        settings = load_config(
            mode=args.mode,
            tile_size=args.tile_size,
            overlap=args.overlap,
            confidence_threshold=args.threshold,
            max_workers=args.workers,
            models=tuple(args.model) if args.model else None,
        )
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    image = cv2.imread(str(args.image))
    if image is None:
        logger.error("Unable to read image '%s'.", args.image)
        return 2
    image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    try:
        models = build_model_handles(settings.models, device=args.device)
        pipeline = RoomDetectionPipeline(models, settings)
    except (ConfigurationError, FileNotFoundError, ImportError) as exc:
        logger.error("Unable to load models: %s", exc)
        return 2

    try:
        result = pipeline.run(image)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    except AllTilesFailedError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        for handle in models:
            handle.engine.close()

    summary: List[str] = [
        f"Image: {args.image.name} ({result.image_width}x{result.image_height})",
        f"Tiles: {result.tiles_processed}/{result.tiles_total}",
        f"Candidates: {result.raw_candidates}",
        f"Rooms: {len(result.detections)}",
    ]
    if result.degraded:
        summary.append(f"Failed tile/model calls: {len(result.failures)}")
    for line in summary:
        logger.info(line)
    for det in result.detections:
        logger.info("  %s", det)

    dataset = detections_to_coco(
        result.detections,
        file_name=args.image.name,
        width=result.image_width,
        height=result.image_height,
        class_names=settings.class_names,
    )
    save_json(dataset, args.output)
    logger.info("Saved %d detections to %s in %.2fs", len(result.detections), args.output, time.time() - start_time)
    return 0


if __name__ == "__main__":
    sys.exit(main())
