from __future__ import annotations

import threading
import warnings
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

import numpy as np


def _resolve_torch_device(device: Optional[str] = None):
    try:
        import torch  # type: ignore
    except ImportError:  # pragma: no cover - torch not available
        return None, device or "cpu"

    if device is None:
        torch_device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    elif isinstance(device, str):
        torch_device = torch.device(device)
    else:
        torch_device = device
    return torch_device, str(torch_device)


def _to_numpy(value: Any) -> np.ndarray:
    if hasattr(value, "detach"):
        value = value.detach().cpu().numpy()
    return np.asarray(value, dtype=np.float32)


def flatten_outputs(outputs: Any) -> List[np.ndarray]:
    """Collect every tensor in a (possibly nested) model output, depth first."""
    if outputs is None:
        return []
    if isinstance(outputs, dict):
        outputs = list(outputs.values())
    if isinstance(outputs, (list, tuple)):
        flat: List[np.ndarray] = []
        for item in outputs:
            flat.extend(flatten_outputs(item))
        return flat
    return [_to_numpy(outputs)]


def select_head_outputs(flat: Sequence[np.ndarray]) -> List[np.ndarray]:
    """Pick the detection tensor and, if present, the mask prototypes from a flattened head output.

    Segmentation heads also return intermediate feature maps such as
    ``[1, 65, 80, 80]`` ahead of the ``[1, 32, 160, 160]`` prototypes. A
    prototype stack has fewer channels than the detection tensor has mask
    coefficient slots, and it comes last.
    """
    detections = next((out for out in flat if out.ndim == 3), None)
    if detections is None:
        return list(flat)
    features = min(detections.shape[1:])
    prototypes = [
        out for out in flat if out.ndim == 4 and out.shape[0] == 1 and 0 < out.shape[1] <= features - 5
    ]
    return [detections, prototypes[-1]] if prototypes else [detections]


class BaseEngine:
    """Common interface for all inference engines.

    ``run`` takes a float32 ``(1, S, S, 3)`` tensor in ``[0, 1]`` and returns
    the raw output tensors. Calls are serialised per engine so one loaded
    model can be shared by worker threads.
    """

    engine_name: str = "base"

    def __init__(self, weight_path: Optional[Path] = None, *, device: Optional[str] = None, **kwargs):
        self.weight_path = Path(weight_path) if weight_path is not None else None
        self.device = device
        self.kwargs = kwargs
        self._model = None
        self._lock = threading.Lock()
        self._load_model()

    def _load_model(self) -> None:
        raise NotImplementedError

    def _forward(self, tensor: np.ndarray) -> Sequence[Any]:
        raise NotImplementedError

    def run(self, tensor: np.ndarray) -> Sequence[Any]:
        with self._lock:
            return self._forward(tensor)

    def close(self) -> None:
        self._model = None

    # context manager helpers
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        source = self.weight_path.name if self.weight_path is not None else "in-memory"
        return f"{type(self).__name__}({source})"


class CallableEngine(BaseEngine):
    """Wrap a plain function ``fn(tensor) -> outputs`` (tests, custom runtimes)."""

    engine_name = "callable"

    def __init__(self, fn: Callable[[np.ndarray], Any], *, name: str = "callable", **kwargs):
        self._fn = fn
        self.name = name
        super().__init__(None, **kwargs)

    def _load_model(self) -> None:
        if not callable(self._fn):
            raise TypeError(f"CallableEngine expects a callable, got {type(self._fn).__name__}.")
        self._model = self._fn

    def _forward(self, tensor: np.ndarray) -> Sequence[Any]:
        if self._model is None:
            raise RuntimeError(f"Engine '{self.name}' is closed.")
        outputs = self._model(tensor)
        if isinstance(outputs, (list, tuple)):
            return list(outputs)
        return [outputs]

    def __repr__(self) -> str:
        return f"CallableEngine({self.name})"


class TorchScriptEngine(BaseEngine):
    """TorchScript export of a detector; outputs are flattened to numpy arrays."""

    engine_name = "torchscript"

    def _load_model(self) -> None:
        try:
            import torch  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise ImportError("torch is required for TorchScript inference.") from exc

        if self.weight_path is None or not self.weight_path.exists():
            raise FileNotFoundError(f"TorchScript model not found: {self.weight_path}")
        self.torch_device, self.device_label = _resolve_torch_device(self.device)
        model = torch.jit.load(str(self.weight_path), map_location=self.torch_device or "cpu")
        model.eval()
        self._model = model
        self.channels_first = bool(self.kwargs.get("channels_first", True))

    def _forward(self, tensor: np.ndarray) -> Sequence[Any]:
        if self._model is None:
            raise RuntimeError("TorchScript model not loaded.")
        import torch  # type: ignore

        batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))
        if self.channels_first:
            batch = batch.permute(0, 3, 1, 2).contiguous()
        with torch.no_grad():
            outputs = self._model(batch.to(self.torch_device or "cpu"))
        return flatten_outputs(outputs)


class UltralyticsEngine(BaseEngine):
    """Raw head outputs of an Ultralytics YOLO checkpoint (no built-in NMS).

    Detection heads yield ``[1, 4 + nc, anchors]``; segmentation heads add a
    ``[1, K, mh, mw]`` prototype stack, returned as the second tensor.
    """

    engine_name = "ultralytics"

    def _load_model(self) -> None:
        try:
            from ultralytics import YOLO  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise ImportError("ultralytics is required for YOLO inference.") from exc

        if self.weight_path is None:
            raise FileNotFoundError("UltralyticsEngine needs a weight path.")
        self.torch_device, self.device_label = _resolve_torch_device(self.device)
        yolo = YOLO(str(self.weight_path))
        try:
            yolo.fuse()
        except Exception:  # pragma: no cover - fuse may fail on some builds
            warnings.warn("YOLO fuse() call failed; continuing without fusion.", RuntimeWarning)
        model = yolo.model
        model.to(self.torch_device or "cpu")
        model.eval()
        self._model = model

    def _forward(self, tensor: np.ndarray) -> Sequence[Any]:
        if self._model is None:
            raise RuntimeError("YOLO model not loaded.")
        import torch  # type: ignore

        batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32)).permute(0, 3, 1, 2)
        with torch.no_grad():
            outputs = self._model(batch.contiguous().to(self.torch_device or "cpu"))

        return select_head_outputs(flatten_outputs(outputs))


ENGINE_REGISTRY: Dict[str, Type[BaseEngine]] = {
    TorchScriptEngine.engine_name: TorchScriptEngine,
    "jit": TorchScriptEngine,
    UltralyticsEngine.engine_name: UltralyticsEngine,
    "yolo": UltralyticsEngine,
}


def resolve_engine(engine_name: str) -> Type[BaseEngine]:
    key = engine_name.lower()
    if key not in ENGINE_REGISTRY:
        raise KeyError(f"No engine registered under name '{engine_name}'.")
    return ENGINE_REGISTRY[key]
