"""
Averaging of per-sample metrics and comparison between assessments.
"""
from __future__ import annotations
from typing import Dict, Sequence

from skinrisk.errors import AggregationPreconditionError
from skinrisk.models import METRIC_NAMES, AggregatedMetrics, SampleResult, SkinMetrics

REQUIRED_SAMPLES = 3


def aggregate_samples(samples: Sequence[SampleResult]) -> AggregatedMetrics:
    """
    Arithmetic mean per dimension of exactly ``REQUIRED_SAMPLES`` samples.

    The capture orchestrator guarantees the count; anything else is a defect.
    """
    if len(samples) != REQUIRED_SAMPLES:
        raise AggregationPreconditionError(
            f"aggregation needs exactly {REQUIRED_SAMPLES} samples, got {len(samples)}"
        )
    means = {
        name: sum(float(getattr(s, name)) for s in samples) / len(samples)
        for name in METRIC_NAMES
    }
    return AggregatedMetrics(sample_count=len(samples), **means)


def compare_metrics(previous: SkinMetrics, current: SkinMetrics) -> Dict[str, float]:
    """Per-dimension change from ``previous`` to ``current`` (positive = improved)."""
    return {
        name: round(float(getattr(current, name)) - float(getattr(previous, name)), 2)
        for name in METRIC_NAMES
    }
