"""Unit tests for SmoothingService — batch-wide K selection."""
import pytest

from app.services.smoothing_service import SmoothingService


@pytest.fixture
def smoothing_service():
    return SmoothingService(default_k=10.0)


class TestMajorityBuckets:

    def test_majority_small_samples(self, smoothing_service):
        assert smoothing_service.select_k([1, 2, 3, 10]) == 8.0

    def test_majority_medium_samples(self, smoothing_service):
        assert smoothing_service.select_k([5, 6, 7, 100]) == 10.0

    def test_majority_large_samples(self, smoothing_service):
        assert smoothing_service.select_k([20, 30, 40, 1]) == 15.0

    def test_zero_counts_fall_in_smallest_bucket(self, smoothing_service):
        assert smoothing_service.select_k([0, 0, 0]) == 8.0

    def test_exact_half_is_not_a_majority(self, smoothing_service):
        """2 of 4 in "<5" -> median path: median 10 -> 5 -> clamped to 8."""
        assert smoothing_service.select_k([2, 2, 10, 10]) == 8.0


class TestMedianFallback:

    def test_median_clamped_high(self, smoothing_service):
        """Buckets 1/1/1/2, median 50 -> 25 -> 20."""
        assert smoothing_service.select_k([1, 10, 50, 200, 300]) == 20.0

    def test_all_very_large_samples(self, smoothing_service):
        assert smoothing_service.select_k([100, 150, 400]) == 20.0

    def test_half_rounds_up(self, smoothing_service):
        """Median 25 -> 12.5 -> 13."""
        assert smoothing_service.select_k([1, 6, 25, 26, 120]) == 13.0

    def test_even_length_median_takes_upper_middle(self, smoothing_service):
        """Middle pair 22, 30 -> median 30 -> 15."""
        assert smoothing_service.select_k([3, 22, 30, 150]) == 15.0

    def test_split_batch_uses_upper_middle(self, smoothing_service):
        """Two thin and two thick surveys, no majority: median 30 -> 15."""
        assert smoothing_service.select_k([30, 3, 30, 3]) == 15.0

    def test_k_always_in_range(self, smoothing_service):
        batches = [[1], [4, 4, 400], [19, 20, 99, 100], [7, 70, 700], [0, 1000]]
        for batch in batches:
            k = smoothing_service.select_k(batch)
            assert 8.0 <= k <= 20.0


class TestDefaults:

    def test_empty_batch_returns_default(self, smoothing_service):
        assert smoothing_service.select_k([]) == 10.0

    def test_configured_default(self):
        assert SmoothingService(default_k=12.0).select_k([]) == 12.0

    def test_none_counts_treated_as_zero(self, smoothing_service):
        assert smoothing_service.select_k([None, None, 3]) == 8.0
