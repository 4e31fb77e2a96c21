from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .decoding import COORDINATE_MODES, OutputDecoder
from .engines import resolve_engine
from .errors import AllTilesFailedError, ConfigurationError, PipelineCancelled
from .fusion import fuse_detections
from .mapping import CoordinateMapper
from .scoring import validate_weight
from .tiling import DEFAULT_PAD_VALUE, as_rgb_array, build_tiles, to_input_tensor, validate_tiling
from .types import (
    ROOM_CLASS_NAMES,
    Detection,
    FusionParams,
    ModelHandle,
    PipelineResult,
    TileDescriptor,
    TileFailure,
)

logger = logging.getLogger(__name__)

PIPELINE_MODES = ("tiled", "single", "auto")
MAX_SINGLE_SIZE = 2000

ProgressCallback = Callable[[int, int], None]


def recommend_mode(width: int, height: int, max_single_size: int = MAX_SINGLE_SIZE) -> str:
    """Tile images larger than ``max_single_size`` on either side; run small ones in one pass."""
    return "tiled" if max(width, height) > max_single_size else "single"


@dataclass(frozen=True)
class ModelSpec:
    """Configured model before loading: display name, engine key, weight file and trust weight.

    ``coordinate_mode`` overrides the pipeline-wide box coordinate mode for this model only.
    """

    name: str
    engine: str
    path: Path
    weight: float = 1.0
    coordinate_mode: Optional[str] = None


@dataclass
class PipelineSettings:
    tile_size: int = 640
    overlap: int = 64
    confidence_threshold: float = 0.1
    grouping_threshold: float = 0.5
    nms_threshold: float = 0.45
    mode: str = "tiled"
    max_workers: int = 1
    merge_thin_edges: bool = True
    pad_value: int = DEFAULT_PAD_VALUE
    coordinate_mode: str = "pixels"
    class_names: Sequence[str] = ROOM_CLASS_NAMES
    models: Sequence[ModelSpec] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        try:
            validate_tiling(1, 1, self.tile_size, self.overlap)
        except ConfigurationError as exc:
            raise ConfigurationError(f"Invalid tiling settings: {exc}") from exc
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                f"confidence_threshold must be within [0, 1], got {self.confidence_threshold}."
            )
        for name in ("grouping_threshold", "nms_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}.")
        if self.mode not in PIPELINE_MODES:
            raise ConfigurationError(f"mode must be one of {PIPELINE_MODES}, got '{self.mode}'.")
        if self.coordinate_mode not in COORDINATE_MODES:
            raise ConfigurationError(
                f"coordinate_mode must be one of {COORDINATE_MODES}, got '{self.coordinate_mode}'."
            )
        for spec in self.models:
            try:
                validate_weight(spec.weight)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Model '{spec.name}': {exc}") from exc
            if spec.coordinate_mode is not None and spec.coordinate_mode not in COORDINATE_MODES:
                raise ConfigurationError(
                    f"Model '{spec.name}': coordinate_mode must be one of {COORDINATE_MODES}, "
                    f"got '{spec.coordinate_mode}'."
                )
        if int(self.max_workers) < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}.")
        if not 0 <= int(self.pad_value) <= 255:
            raise ConfigurationError(f"pad_value must be within [0, 255], got {self.pad_value}.")

    @property
    def fusion(self) -> FusionParams:
        return FusionParams(grouping_threshold=self.grouping_threshold, nms_threshold=self.nms_threshold)


def build_model_handles(specs: Sequence[ModelSpec], *, device: Optional[str] = None) -> List[ModelHandle]:
    """Instantiate the engine of every configured model, in order."""
    handles: List[ModelHandle] = []
    for spec in specs:
        try:
            engine_cls = resolve_engine(spec.engine)
        except KeyError as exc:
            raise ConfigurationError(str(exc.args[0])) from exc
        logger.info("Loading model '%s' (%s) from '%s'", spec.name, spec.engine, spec.path)
        handles.append(
            ModelHandle(
                engine=engine_cls(spec.path, device=device),
                weight=spec.weight,
                name=spec.name,
                coordinate_mode=spec.coordinate_mode,
            )
        )
    return handles


class PipelineState(enum.Enum):
    IDLE = "idle"
    TILING = "tiling"
    PER_TILE_INFERENCE = "per_tile_inference"
    GLOBAL_FUSION = "global_fusion"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancellationToken:
    """Cooperative cancellation flag, checked by the pipeline between tiles."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CandidateCollector:
    """Append-only, thread-safe store of mapped candidates.

    ``ordered`` returns them sorted by (tile index, model index, decode order)
    no matter in which order the workers delivered them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[Tuple[int, int, int, Detection]] = []

    def add(self, tile_index: int, model_index: int, detections: Sequence[Detection]) -> None:
        with self._lock:
            for seq, det in enumerate(detections):
                self._items.append((tile_index, model_index, seq, det))

    def ordered(self) -> List[Detection]:
        with self._lock:
            items = sorted(self._items, key=lambda item: item[:3])
        return [item[3] for item in items]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class _TileOutcome:
    tile_index: int
    attempted: int = 0
    failures: List[TileFailure] = field(default_factory=list)
    skipped: bool = False


class RoomDetectionPipeline:
    """Run every model over every tile of an image and fuse the results."""

    def __init__(self, models: Sequence[ModelHandle], settings: PipelineSettings | None = None):
        if not models:
            raise ConfigurationError("At least one model is required to run the pipeline.")
        self.models = list(models)
        for handle in self.models:
            if handle.coordinate_mode is not None and handle.coordinate_mode not in COORDINATE_MODES:
                raise ConfigurationError(
                    f"Model '{handle.name}': coordinate_mode must be one of {COORDINATE_MODES}, "
                    f"got '{handle.coordinate_mode}'."
                )
        self.settings = settings or PipelineSettings()
        self.state = PipelineState.IDLE
        self._decoder = OutputDecoder(
            self.settings.tile_size,
            class_names=self.settings.class_names,
            coordinate_mode=self.settings.coordinate_mode,
        )

    def _set_state(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s -> %s", self.state.value, state.value)
        self.state = state

    def _process_tile(
        self,
        tile: TileDescriptor,
        total: int,
        mapper: CoordinateMapper,
        collector: CandidateCollector,
        cancel_token: Optional[CancellationToken],
    ) -> _TileOutcome:
        outcome = _TileOutcome(tile_index=tile.index)
        if cancel_token is not None and cancel_token.cancelled:
            outcome.skipped = True
            return outcome

        logger.info(
            "Processing tile %d/%d at (%d, %d)",
            tile.index + 1,
            total,
            tile.offset_x,
            tile.offset_y,
        )
        tensor = to_input_tensor(tile.tile_image)
        for model_index, handle in enumerate(self.models):
            outcome.attempted += 1
            try:
                outputs = handle.engine.run(tensor)
                candidates = self._decoder.decode(
                    outputs,
                    confidence_threshold=self.settings.confidence_threshold,
                    weight=handle.weight,
                    coordinate_mode=handle.coordinate_mode,
                )
                detections = mapper.map_candidates(tile, candidates)
            except Exception as exc:
                logger.warning("Tile %d, model '%s' failed: %s", tile.index, handle.name, exc)
                outcome.failures.append(
                    TileFailure(
                        tile_index=tile.index,
                        model_index=model_index,
                        model_name=handle.name,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                )
                continue
            collector.add(tile.index, model_index, detections)
            logger.debug(
                "Tile %d, model '%s': %d candidates (%d kept after mapping)",
                tile.index,
                handle.name,
                len(candidates),
                len(detections),
            )
        return outcome

    @staticmethod
    def _report(progress: Optional[ProgressCallback], done: int, total: int) -> None:
        if progress is None:
            return
        try:
            progress(done, total)
        except Exception as exc:
            logger.warning("Progress callback raised %s; ignoring.", exc)

    def run(
        self,
        image,
        *,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """Tile ``image``, run every model on every tile and fuse the candidates.

        ``progress(done, total)`` is called synchronously on the calling thread after
        each tile, so it must return quickly; exceptions it raises are logged and
        ignored. Hand long work (UI updates, I/O) off to another thread or queue.
        """
        start_time = time.time()
        settings = self.settings

        self._set_state(PipelineState.TILING)
        try:
            rgb = as_rgb_array(image)
            height, width = rgb.shape[:2]
            mode = recommend_mode(width, height) if settings.mode == "auto" else settings.mode
            tiles = build_tiles(
                rgb,
                settings.tile_size,
                settings.overlap,
                mode=mode,
                merge_thin_edges=settings.merge_thin_edges,
                pad_value=settings.pad_value,
            )
        except Exception:
            self._set_state(PipelineState.FAILED)
            raise
        total = len(tiles)
        logger.info("Image %dx%d split into %d tile(s) (%s mode)", width, height, total, mode)

        self._set_state(PipelineState.PER_TILE_INFERENCE)
        mapper = CoordinateMapper(width, height)
        collector = CandidateCollector()
        outcomes: List[_TileOutcome] = []

        if settings.max_workers > 1 and total > 1:
            with ThreadPoolExecutor(max_workers=settings.max_workers) as executor:
                futures = [
                    executor.submit(self._process_tile, tile, total, mapper, collector, cancel_token)
                    for tile in tiles
                ]
                for done, future in enumerate(as_completed(futures), 1):
                    outcomes.append(future.result())
                    self._report(progress, done, total)
        else:
            for done, tile in enumerate(tiles, 1):
                if cancel_token is not None and cancel_token.cancelled:
                    break
                outcomes.append(self._process_tile(tile, total, mapper, collector, cancel_token))
                self._report(progress, done, total)

        if cancel_token is not None and cancel_token.cancelled:
            self._set_state(PipelineState.CANCELLED)
            logger.info("Pipeline cancelled after %d/%d tiles", sum(not o.skipped for o in outcomes), total)
            raise PipelineCancelled("Room detection was cancelled.")

        failures = sorted(
            (failure for outcome in outcomes for failure in outcome.failures),
            key=lambda item: (item.tile_index, item.model_index),
        )
        attempted = sum(outcome.attempted for outcome in outcomes)
        if attempted and len(failures) == attempted:
            self._set_state(PipelineState.FAILED)
            raise AllTilesFailedError(failures)

        self._set_state(PipelineState.GLOBAL_FUSION)
        candidates = collector.ordered()
        detections = fuse_detections(candidates, settings.fusion, width, height)

        self._set_state(PipelineState.DONE)
        elapsed = time.time() - start_time
        if failures:
            logger.warning("%d of %d tile/model calls failed; result is degraded.", len(failures), attempted)
        logger.info(
            "Completed in %.1fs: %d candidates fused into %d rooms",
            elapsed,
            len(candidates),
            len(detections),
        )
        return PipelineResult(
            detections=detections,
            image_width=width,
            image_height=height,
            tiles_total=total,
            tiles_processed=sum(1 for outcome in outcomes if not outcome.skipped),
            raw_candidates=len(candidates),
            failures=failures,
            elapsed=elapsed,
        )
