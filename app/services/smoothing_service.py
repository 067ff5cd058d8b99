"""
Panel Health — Smoothing-constant (K) selection for Bayesian shrinkage.

One K is chosen per scoring batch from the distribution of per-survey rating
sample sizes and applied to every survey in that batch:

  bucket            majority K
  < 5 ratings            8
  5 - 19 ratings        10
  20 - 99 ratings       15
  otherwise         clamp(round(median / 2), 8, 20)

The median of an even-sized batch is the upper of the two middle counts.

"Majority" means strictly more than half of all surveys in the batch.
"""

from __future__ import annotations

import math
from typing import Sequence

import structlog

logger = structlog.get_logger("panel_health.smoothing_service")


class SmoothingService:
    """Chooses the batch-wide pseudo-count K."""

    BUCKET_K: dict[str, float] = {
        "lt_5": 8.0,
        "5_to_19": 10.0,
        "20_to_99": 15.0,
    }

    MEDIAN_K_MIN: float = 8.0
    MEDIAN_K_MAX: float = 20.0

    def __init__(self, default_k: float = 10.0) -> None:
        self.default_k = default_k

    def select_k(self, sample_counts: Sequence[int]) -> float:
        """Return K for a batch given every survey's rating count.

        An empty batch returns the configured default K.
        """
        counts = [max(0, int(c or 0)) for c in sample_counts or []]
        if not counts:
            logger.info("select_k_default", k=self.default_k, reason="empty_batch")
            return self.default_k

        buckets = self._bucketize(counts)
        total = len(counts)

        for bucket, k in self.BUCKET_K.items():
            if buckets[bucket] * 2 > total:
                logger.info(
                    "select_k_majority",
                    k=k,
                    bucket=bucket,
                    buckets=buckets,
                    surveys=total,
                )
                return k

        # Upper middle value for an even-sized batch
        median = sorted(counts)[total // 2]
        # Half-up rounding, so 12.5 -> 13
        k = float(math.floor(median / 2 + 0.5))
        k = max(self.MEDIAN_K_MIN, min(self.MEDIAN_K_MAX, k))

        logger.info(
            "select_k_median",
            k=k,
            median=median,
            buckets=buckets,
            surveys=total,
        )
        return k

    @staticmethod
    def _bucketize(counts: Sequence[int]) -> dict[str, int]:
        buckets = {"lt_5": 0, "5_to_19": 0, "20_to_99": 0, "gte_100": 0}
        for count in counts:
            if count < 5:
                buckets["lt_5"] += 1
            elif count < 20:
                buckets["5_to_19"] += 1
            elif count < 100:
                buckets["20_to_99"] += 1
            else:
                buckets["gte_100"] += 1
        return buckets
