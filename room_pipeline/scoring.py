"""Ensemble weighting of raw model confidences."""

from __future__ import annotations

import math

import numpy as np


def validate_weight(weight: float) -> float:
    value = float(weight)
    if not math.isfinite(value) or value < 0.0:
        raise ValueError(f"Model weight must be a finite value >= 0, got {weight!r}.")
    return value


def weighted_confidence(raw_confidence, weight: float):
    """Scale a confidence (scalar or array) by the model's trust weight.

    Weights are not normalised across the ensemble, so a primary model with
    weight 1.0 keeps its scores while secondary models are damped.
    """
    if isinstance(raw_confidence, np.ndarray):
        return raw_confidence * np.float64(weight)
    return float(raw_confidence) * float(weight)
