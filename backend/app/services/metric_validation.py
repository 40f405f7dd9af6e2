"""Validation and anomaly detection for self-reported outcome metrics.

Two independent checks feed ``ResultLog.is_flagged``:

- ``validate_metric``: hard bounds per metric type reject a value; values in
  the top slice of the range, or reported in an unexpected unit, are accepted
  but flagged.
- ``detect_anomaly``: a z-score test against prior accepted values for the
  same prompt and metric type. Never rejects, only flags.
"""

import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from app.core.config import MetricBound, settings


@dataclass(frozen=True)
class MetricValidation:
    valid: bool
    flagged: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class AnomalyResult:
    is_anomaly: bool
    z_score: Optional[float] = None
    message: Optional[str] = None


def validate_metric(
    metric_type: str,
    value: float,
    unit: str,
    bounds: Optional[Mapping[str, MetricBound]] = None,
) -> MetricValidation:
    """Check a reported value against the bounds table.

    Args:
        metric_type: Metric type key (``time_saved``, ``revenue``...)
        value: Reported value
        unit: Reported unit
        bounds: Bounds table (defaults to ``settings.METRIC_BOUNDS``)

    Returns:
        MetricValidation; ``valid=False`` means the value must be rejected
    """
    table = bounds if bounds is not None else settings.METRIC_BOUNDS
    metric_type = getattr(metric_type, "value", metric_type)
    bound = table.get(metric_type)

    if bound is None:
        return MetricValidation(
            valid=True, flagged=True, message=f"Unknown metric type: {metric_type}"
        )

    if value < bound.min:
        return MetricValidation(
            valid=False,
            flagged=False,
            message=f"{bound.label} must be at least {bound.min:g}{bound.unit}",
        )
    if value > bound.max:
        return MetricValidation(
            valid=False,
            flagged=False,
            message=f"{bound.label} must be at most {bound.max:g}{bound.unit}",
        )

    suspiciously_high = value > bound.max * bound.plausible_ratio
    unit_mismatch = unit != bound.unit and unit != "other"

    message = None
    if suspiciously_high:
        message = "This value is unusually high. Please double-check it."
    elif unit_mismatch:
        message = f"The recommended unit is \"{bound.unit}\""

    return MetricValidation(
        valid=True, flagged=suspiciously_high or unit_mismatch, message=message
    )


class AnomalyDetector:
    """Z-score outlier test over a prompt's accepted history."""

    def __init__(
        self,
        min_samples: Optional[int] = None,
        z_threshold: Optional[float] = None,
    ):
        self.min_samples = min_samples if min_samples is not None else settings.ANOMALY_MIN_SAMPLES
        self.z_threshold = z_threshold if z_threshold is not None else settings.ANOMALY_Z_THRESHOLD

    def check(self, history: Sequence[float], value: float) -> AnomalyResult:
        # Not enough history to judge
        if len(history) < self.min_samples:
            return AnomalyResult(is_anomaly=False)

        mean = sum(history) / len(history)
        variance = sum((v - mean) ** 2 for v in history) / len(history)
        std_dev = math.sqrt(variance)

        if std_dev == 0:
            if value != mean:
                return AnomalyResult(
                    is_anomaly=True,
                    message=f"Every previous report was {mean:g}; this value differs",
                )
            return AnomalyResult(is_anomaly=False)

        z_score = (value - mean) / std_dev
        rounded = round(z_score, 2)
        if abs(z_score) > self.z_threshold:
            return AnomalyResult(
                is_anomaly=True,
                z_score=rounded,
                message=f"This value is far outside the usual range (mean: {round(mean)})",
            )
        return AnomalyResult(is_anomaly=False, z_score=rounded)


def detect_anomaly(history: Sequence[float], value: float) -> AnomalyResult:
    """Run the default-configured detector."""
    return AnomalyDetector().check(history, value)
