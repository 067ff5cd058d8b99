"""Unit tests for SentimentService — comment sentiment scoring."""
import pytest
from unittest.mock import MagicMock

from app.services.sentiment_service import SentimentService


class TestScoreComment:
    """Fine-grained per-comment score."""

    @pytest.mark.parametrize("text", [None, "", "   ", "\n\t"])
    def test_blank_is_neutral(self, sentiment_service, text):
        assert sentiment_service.score_comment(text) == 0.0

    def test_base_polarity_divided_by_saturation(self, sentiment_service):
        """'good' = 1.9 -> 1.9 / 5."""
        assert sentiment_service.score_comment("good") == pytest.approx(0.38)

    def test_unknown_words_are_neutral(self, sentiment_service):
        assert sentiment_service.score_comment("the survey had questions") == 0.0

    def test_clamped_to_plus_one(self, sentiment_service):
        """3 x 3.1 = 9.3 -> 1.86 before clamping."""
        assert sentiment_service.score_comment("great great great") == 1.0

    def test_clamped_to_minus_one(self, sentiment_service):
        score = sentiment_service.score_comment("hate hate terrible bad")
        assert score == -1.0

    def test_domain_adjustment_negative(self, sentiment_service):
        """'confusing' is not in the lexicon; domain delta -2 -> -0.4."""
        assert sentiment_service.score_comment("confusing") == pytest.approx(-0.4)

    def test_domain_adjustment_positive(self, sentiment_service):
        assert sentiment_service.score_comment("excellent") == pytest.approx(0.6)

    def test_domain_match_is_case_insensitive(self, sentiment_service):
        assert sentiment_service.score_comment("EXCELLENT") == pytest.approx(0.6)

    def test_domain_phrase_substring(self, sentiment_service):
        """'too long' -2 plus 'waste' -3 -> -5 -> -1."""
        text = "It was too long and a waste of my time"
        assert sentiment_service.score_comment(text) == -1.0

    def test_base_and_domain_combine(self, sentiment_service):
        """good (1.9) + 'smooth' (+2) -> 3.9 / 5."""
        assert sentiment_service.score_comment("good and smooth") == pytest.approx(0.78)

    def test_internal_failure_returns_zero(self):
        lexicon = MagicMock()
        lexicon.get.side_effect = RuntimeError("corrupt lexicon")
        service = SentimentService(lexicon=lexicon)
        assert service.score_comment("good") == 0.0

    def test_always_within_bounds(self, sentiment_service):
        texts = [
            "good", "bad", "love love love love", "waste waste confusing",
            "excellent smooth enjoyed", "terrible", "ok",
        ]
        for text in texts:
            score = sentiment_service.score_comment(text)
            assert -1.0 <= score <= 1.0


class TestListAggregation:
    """Fine mean vs coarse ternary list modes."""

    def test_fine_mean(self, sentiment_service):
        """(0.38 + -0.5) / 2."""
        assert sentiment_service.score_comments(["good", "bad"]) == pytest.approx(-0.06)

    def test_fine_mean_empty(self, sentiment_service):
        assert sentiment_service.score_comments([]) == 0.0
        assert sentiment_service.score_comments(None) == 0.0

    def test_fine_mean_ignores_blanks(self, sentiment_service):
        assert sentiment_service.score_comments(["good", "", None]) == pytest.approx(0.38)

    def test_score_each_keeps_order(self, sentiment_service):
        scores = sentiment_service.score_each(["bad", "", "good"])
        assert scores == [pytest.approx(-0.5), pytest.approx(0.38)]

    def test_ternary_positive_majority(self, sentiment_service):
        """Labels 1, 1, -1 average 0.33 > 0.3."""
        assert sentiment_service.score_comments_ternary(["good", "great", "bad"]) == 1

    def test_ternary_negative_majority(self, sentiment_service):
        assert sentiment_service.score_comments_ternary(["bad", "terrible", "good"]) == -1

    def test_ternary_dead_band(self, sentiment_service):
        assert sentiment_service.score_comments_ternary(["good", "bad"]) == 0

    def test_ternary_empty(self, sentiment_service):
        assert sentiment_service.score_comments_ternary([]) == 0
        assert sentiment_service.score_comments_ternary(None) == 0
        assert sentiment_service.score_comments_ternary(["", " "]) == 0

    def test_ternary_ignores_domain_phrases(self, sentiment_service):
        """Labels come from the lexicon-only score."""
        assert sentiment_service.classify_comment("confusing") == 0
        assert sentiment_service.score_comments_ternary(["confusing", "waste"]) == 0

    def test_ternary_output_domain(self, sentiment_service):
        batches = [["good"], ["bad"], ["good", "bad"], ["love", "hate", "slow"]]
        for batch in batches:
            assert sentiment_service.score_comments_ternary(batch) in (-1, 0, 1)

    def test_modes_differ(self, sentiment_service):
        """Fine mean keeps magnitude; ternary saturates."""
        comments = ["good", "good"]
        assert sentiment_service.score_comments(comments) == pytest.approx(0.38)
        assert sentiment_service.score_comments_ternary(comments) == 1


class TestDetailedSentiment:
    """Per-comment detail used by the comments view."""

    def test_detail_fields(self, sentiment_service):
        detail = sentiment_service.get_detailed_sentiment("good but bad bad")
        assert detail["score"] == -1
        assert detail["category"] == "negative"
        assert detail["words"] == {"positive": ["good"], "negative": ["bad", "bad"]}
        assert detail["comparative"] == pytest.approx(-0.775)
        assert detail["fine_score"] == pytest.approx(-0.62)

    def test_blank_detail_is_neutral(self, sentiment_service):
        detail = sentiment_service.get_detailed_sentiment("")
        assert detail["score"] == 0
        assert detail["category"] == "neutral"
        assert detail["words"] == {"positive": [], "negative": []}

    @pytest.mark.parametrize(
        "rating,expected",
        [(10, "positive"), (5, "positive"), (4, "neutral"), (3, "negative"),
         (1, "negative"), (None, None)],
    )
    def test_rating_sentiment(self, rating, expected):
        assert SentimentService.categorize_rating_sentiment(rating) == expected


class TestDefaultLexicon:
    """The packaged VADER lexicon is loaded when none is given."""

    def test_vader_polarity(self):
        service = SentimentService()
        assert service.score_comment("good") > 0
        assert service.score_comment("terrible") < 0
        assert service.score_comment("") == 0.0
