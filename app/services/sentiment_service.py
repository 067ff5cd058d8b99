"""
Panel Health — Comment sentiment scoring for survey feedback.

Turns respondents' free-text feedback into a scalar in [-1, 1]:

  1. Tokenise the lower-cased comment and sum word valences from the VADER
     lexicon (base polarity).
  2. Add survey-specific phrase adjustments (substring match, e.g.
     "confusing" -2, "excellent" +3).
  3. Normalise:  clamp((base + domain) / 5, -1, 1)

Two list aggregations are exposed and are NOT interchangeable:

  * ``score_comments``          — mean of the fine per-comment scores.
    The Bayesian composer uses the fine per-comment scores as its
    sentiment observations.
  * ``score_comments_ternary``  — each comment reduced to +1/0/-1 from the
    lexicon-only score, averaged, then re-quantised to exactly -1, 0 or +1.
    The legacy composer uses this.

Scoring never raises: any internal failure yields the neutral value 0.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

import structlog
from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

logger = structlog.get_logger("panel_health.sentiment_service")

_TOKEN_RE = re.compile(r"[a-z]+(?:'[a-z]+)?")


class SentimentService:
    """Lexicon-based sentiment scorer tuned for survey feedback."""

    # Combined raw score that maps to +/-1.0
    SATURATION: float = 5.0

    # Average above/below which a list of ternary scores counts as
    # positive/negative overall
    TERNARY_THRESHOLD: float = 0.3

    # ── Survey-feedback phrase adjustments (case-insensitive substring) ──
    DOMAIN_ADJUSTMENTS: dict[str, float] = {
        # Negative
        "confusing": -2.0,
        "unclear": -2.0,
        "waste": -3.0,
        "too long": -2.0,
        "too many questions": -2.0,
        "repetitive": -2.0,
        "tedious": -2.0,
        "boring": -1.0,
        "frustrating": -2.0,
        "glitch": -2.0,
        "crashed": -2.0,
        "broken": -2.0,
        "screened out": -2.0,
        "disqualified": -2.0,
        "kicked out": -2.0,
        "not paid": -2.0,
        "no compensation": -2.0,
        # Positive
        "excellent": 3.0,
        "easy to": 1.0,
        "quick": 1.0,
        "smooth": 2.0,
        "interesting": 2.0,
        "engaging": 2.0,
        "relevant": 1.0,
        "well designed": 2.0,
        "well-designed": 2.0,
        "user-friendly": 2.0,
        "user friendly": 2.0,
        "enjoyed": 2.0,
    }

    def __init__(self, lexicon: Optional[dict[str, float]] = None) -> None:
        if lexicon is None:
            lexicon = SentimentIntensityAnalyzer().lexicon
        self.lexicon: dict[str, float] = lexicon

    # ── Public API ──────────────────────────────────────────────────

    def score_comment(self, text: Optional[str]) -> float:
        """Fine-grained sentiment of a single comment in [-1, 1]."""
        if not self._has_text(text):
            return 0.0

        try:
            lowered = text.lower()
            base = self._lexicon_score(self._tokenize(lowered))
            domain = self._domain_adjustment(lowered)
            return self._clamp((base + domain) / self.SATURATION, -1.0, 1.0)
        except Exception:
            logger.exception("score_comment_failed", text_length=len(text))
            return 0.0

    def score_comments(self, texts: Optional[Iterable[Optional[str]]]) -> float:
        """Mean of the fine per-comment scores (continuous, in [-1, 1]).

        Blank comments are ignored; an empty list is neutral.
        """
        scores = self.score_each(texts)
        if not scores:
            return 0.0
        return sum(scores) / len(scores)

    def score_each(self, texts: Optional[Iterable[Optional[str]]]) -> list[float]:
        """Fine score per non-blank comment, in input order."""
        if not texts:
            return []
        return [self.score_comment(t) for t in texts if self._has_text(t)]

    def classify_comment(self, text: Optional[str]) -> int:
        """Reduce a comment to +1 / 0 / -1 by the sign of its lexicon-only
        score (no domain adjustments)."""
        if not self._has_text(text):
            return 0

        try:
            base = self._lexicon_score(self._tokenize(text.lower()))
        except Exception:
            logger.exception("classify_comment_failed", text_length=len(text))
            return 0

        if base > 0:
            return 1
        if base < 0:
            return -1
        return 0

    def score_comments_ternary(
        self, texts: Optional[Iterable[Optional[str]]]
    ) -> int:
        """Coarse list sentiment: exactly one of -1, 0, +1.

        Each comment is classified with ``classify_comment``; the mean of
        those labels is re-quantised with a +/-0.3 dead band.
        """
        if not texts:
            return 0

        labels = [self.classify_comment(t) for t in texts if self._has_text(t)]
        if not labels:
            return 0

        average = sum(labels) / len(labels)
        if average > self.TERNARY_THRESHOLD:
            return 1
        if average < -self.TERNARY_THRESHOLD:
            return -1
        return 0

    def get_detailed_sentiment(self, text: Optional[str]) -> dict:
        """Ternary label plus the matched lexicon words for one comment.

        Returns
        -------
        dict with keys:
            score (-1/0/1), category, fine_score, confidence,
            words {positive, negative}, comparative
        """
        neutral = {
            "score": 0,
            "category": "neutral",
            "fine_score": 0.0,
            "confidence": 1,
            "words": {"positive": [], "negative": []},
            "comparative": 0.0,
        }
        if not self._has_text(text):
            return neutral

        try:
            tokens = self._tokenize(text.lower())
            positive = [t for t in tokens if self.lexicon.get(t, 0.0) > 0]
            negative = [t for t in tokens if self.lexicon.get(t, 0.0) < 0]
            base = self._lexicon_score(tokens)
        except Exception:
            logger.exception("detailed_sentiment_failed", text_length=len(text))
            return neutral

        score = self.classify_comment(text)
        return {
            "score": score,
            "category": self.categorize_sentiment(score),
            "fine_score": round(self.score_comment(text), 4),
            "confidence": 1,
            "words": {"positive": positive, "negative": negative},
            "comparative": round(base / len(tokens), 4) if tokens else 0.0,
        }

    @staticmethod
    def categorize_sentiment(score: float) -> str:
        if score >= 1:
            return "positive"
        if score <= -1:
            return "negative"
        return "neutral"

    @staticmethod
    def categorize_rating_sentiment(rating: Optional[float]) -> Optional[str]:
        """Sentiment implied by a 1-10 rating (>=5 positive, <=3 negative)."""
        if rating is None:
            return None
        if rating >= 5:
            return "positive"
        if rating <= 3:
            return "negative"
        return "neutral"

    # ── Internals ───────────────────────────────────────────────────

    @staticmethod
    def _has_text(text: Optional[str]) -> bool:
        return isinstance(text, str) and bool(text.strip())

    @staticmethod
    def _tokenize(lowered: str) -> list[str]:
        return _TOKEN_RE.findall(lowered)

    def _lexicon_score(self, tokens: list[str]) -> float:
        return float(sum(self.lexicon.get(token, 0.0) for token in tokens))

    def _domain_adjustment(self, lowered: str) -> float:
        return sum(
            delta
            for phrase, delta in self.DOMAIN_ADJUSTMENTS.items()
            if phrase in lowered
        )

    @staticmethod
    def _clamp(value: float, low: float, high: float) -> float:
        return max(low, min(high, value))
