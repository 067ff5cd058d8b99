"""Unit tests for the contribution functions — server and display sets."""
import pytest

from app.services.contribution_service import (
    DISPLAY_FORMULAS,
    DISPLAY_WEIGHTS,
    SERVER_WEIGHTS,
    FormulaSet,
    calculate_display_score,
    clamp_score,
    display_dropoff_contribution,
    display_rating_contribution,
    display_screener_question_contribution,
    display_screenout_contribution,
    display_sentiment_contribution,
    dropoff_contribution,
    rating_contribution,
    screener_question_contribution,
    screenout_contribution,
    sentiment_contribution,
    server_formulas,
)


class TestServerFormulas:
    """Authoritative 35 / 25 / 20 / 15 / 5 set."""

    def test_rating_endpoints(self):
        assert rating_contribution(1) == 0.0
        assert rating_contribution(10) == pytest.approx(35.0)
        assert rating_contribution(5.5) == pytest.approx(17.5)

    def test_rating_clamped_to_scale(self):
        assert rating_contribution(0) == 0.0
        assert rating_contribution(12) == pytest.approx(35.0)

    def test_rating_custom_scale(self):
        assert rating_contribution(0, scale_min=0, scale_max=5) == 0.0
        assert rating_contribution(5, scale_min=0, scale_max=5) == pytest.approx(35.0)

    def test_sentiment(self):
        assert sentiment_contribution(-1) == 0.0
        assert sentiment_contribution(0) == pytest.approx(12.5)
        assert sentiment_contribution(1) == pytest.approx(25.0)

    def test_dropoff(self):
        assert dropoff_contribution(0) == pytest.approx(20.0)
        assert dropoff_contribution(50) == pytest.approx(10.0)
        assert dropoff_contribution(100) == 0.0

    def test_screenout(self):
        assert screenout_contribution(0) == pytest.approx(15.0)
        assert screenout_contribution(50) == pytest.approx(7.5)
        assert screenout_contribution(100) == 0.0

    @pytest.mark.parametrize(
        "n,expected",
        [(0, 5.0), (6, 2.5), (12, 0.0), (21, -2.5), (30, -5.0), (45, -5.0), (500, -5.0)],
    )
    def test_screener_piecewise(self, n, expected):
        assert screener_question_contribution(n) == pytest.approx(expected)

    def test_screener_strictly_decreasing_to_floor(self):
        values = [screener_question_contribution(n) for n in range(0, 31)]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_perfect_inputs_score_100(self):
        breakdown = server_formulas().breakdown(10, 1, 0, 0, 0)
        assert breakdown.total() == pytest.approx(100.0)
        assert clamp_score(breakdown.total()) == 100.0

    def test_adversarial_inputs_score_0(self):
        breakdown = server_formulas().breakdown(0, -1, 100, 100, 60)
        assert breakdown.total() == pytest.approx(-5.0)
        assert clamp_score(breakdown.total()) == 0.0

    def test_weights_invariant(self):
        breakdown = server_formulas().breakdown(7, 0.2, 10, 20, 8)
        assert breakdown.weights() == SERVER_WEIGHTS
        assert sum(breakdown.weights().values()) == 100.0

    def test_inverted_scale_rejected(self):
        with pytest.raises(ValueError):
            server_formulas(scale_min=10, scale_max=1)


class TestDisplayFormulas:
    """Dashboard 40 / 35 / 15 / 15 / 5 set."""

    def test_dropoff(self):
        assert display_dropoff_contribution(0) == pytest.approx(15.0)
        assert display_dropoff_contribution(50) == pytest.approx(7.5)
        assert display_dropoff_contribution(100) == 0.0

    def test_screenout(self):
        assert display_screenout_contribution(0) == pytest.approx(15.0)
        assert display_screenout_contribution(50) == pytest.approx(7.5)

    def test_rating_zero_to_ten(self):
        assert display_rating_contribution(0) == 0.0
        assert display_rating_contribution(5) == pytest.approx(20.0)
        assert display_rating_contribution(10) == pytest.approx(40.0)
        assert display_rating_contribution(11) == pytest.approx(40.0)

    def test_sentiment(self):
        assert display_sentiment_contribution(0) == pytest.approx(17.5)
        assert display_sentiment_contribution(1) == pytest.approx(35.0)
        assert display_sentiment_contribution(-1) == 0.0

    def test_screener_knee_and_plateaus(self):
        assert display_screener_question_contribution(12) == pytest.approx(0.0)
        assert display_screener_question_contribution(0) == pytest.approx(25 / 9)
        assert display_screener_question_contribution(7) == pytest.approx(25 / 9)
        assert display_screener_question_contribution(18) == pytest.approx(-5 / 3)
        assert display_screener_question_contribution(60) == pytest.approx(-5 / 3)

    def test_screener_decreasing_between_plateaus(self):
        values = [display_screener_question_contribution(q) for q in range(7, 18)]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_end_to_end_midpoint_example(self):
        """rating 5, neutral sentiment, 50% / 50%, 12 questions -> 52.5."""
        result = calculate_display_score(5, 0, 50, 50, 12)
        assert result.score == 52.5
        assert result.breakdown.user_rating.contribution == pytest.approx(20.0)
        assert result.breakdown.user_sentiment.contribution == pytest.approx(17.5)
        assert result.breakdown.dropoff_rate.contribution == pytest.approx(7.5)
        assert result.breakdown.screenout_rate.contribution == pytest.approx(7.5)

    def test_end_to_end_clamps_to_100(self):
        result = calculate_display_score(9.5, 0.9, 10, 5, 5)
        assert result.total_contribution > 100
        assert result.score == 100.0

    def test_extremes(self):
        assert calculate_display_score(0, -1, 100, 100, 60).score == 0.0
        assert calculate_display_score(10, 1, 0, 0, 0).score == 100.0

    def test_sets_are_distinct(self):
        assert DISPLAY_FORMULAS.name is FormulaSet.DISPLAY
        assert server_formulas().name is FormulaSet.SERVER
        assert DISPLAY_FORMULAS.weights == DISPLAY_WEIGHTS
        assert DISPLAY_WEIGHTS != SERVER_WEIGHTS
        assert calculate_display_score(5, 0, 50, 50, 12).formula_set == "display"


class TestClampScore:

    @pytest.mark.parametrize(
        "total,expected",
        [(-12.0, 0.0), (0.0, 0.0), (55.556, 55.56), (100.0, 100.0), (131.2, 100.0)],
    )
    def test_clamp_and_round(self, total, expected):
        assert clamp_score(total) == expected
