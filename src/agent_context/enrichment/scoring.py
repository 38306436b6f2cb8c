"""Text scoring strategies used by the emotional and social enrichers.

The keyword heuristics live behind :class:`ScoringStrategy` so an NLP
backed implementation can replace them without touching the enrichers,
the pipeline or the transformers.
"""

import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence


EMOTION_KEYWORDS: Dict[str, List[str]] = {
    "happy": [
        "joy",
        "celebrate",
        "success",
        "achievement",
        "positive",
        "good",
        "excellent",
        "wonderful",
    ],
    "sad": [
        "loss",
        "grief",
        "disappointment",
        "failure",
        "negative",
        "bad",
        "terrible",
        "awful",
    ],
    "angry": ["frustration", "annoyance", "rage", "mad", "furious", "irritated", "upset"],
    "anxious": [
        "worry",
        "fear",
        "concern",
        "nervous",
        "stress",
        "tension",
        "uncertainty",
    ],
    "confident": ["sure", "certain", "assured", "strong", "capable", "skilled", "expert"],
    "curious": [
        "wonder",
        "question",
        "explore",
        "discover",
        "learn",
        "investigate",
        "research",
    ],
    "empathetic": [
        "understand",
        "feel",
        "compassion",
        "sympathy",
        "care",
        "support",
        "help",
    ],
    "proud": [
        "accomplished",
        "achieved",
        "successful",
        "recognition",
        "honor",
        "praise",
    ],
    "confused": ["unclear", "puzzled", "uncertain", "lost", "complicated", "complex"],
    "nostalgic": ["remember", "past", "memory", "history", "before", "used to", "miss"],
}

POSITIVE_WORDS = ["good", "great", "excellent", "positive", "happy", "satisfied", "success"]
NEGATIVE_WORDS = ["bad", "terrible", "negative", "angry", "frustrated", "problem", "error"]

_WORD_RE = re.compile(r"\w+")


class ScoringStrategy(ABC):
    """Scores free text for emotional cues and sentiment."""

    @abstractmethod
    def emotion_hits(self, text: str) -> Dict[str, int]:
        """Count cue matches per emotion.

        Args:
            text: Free text from the interaction.

        Returns:
            Mapping of emotion name to number of matched cues; every known
            emotion is present, with zero when nothing matched.
        """

    @abstractmethod
    def sentiment(self, text: str) -> float:
        """Estimate sentiment of text in [-1, 1]."""

    def themes(self, texts: Iterable[str], limit: int = 5, min_length: int = 4) -> List[str]:
        """Most frequent words across texts, longest-first on ties."""
        counts: Counter = Counter()
        for text in texts:
            for word in _WORD_RE.findall(text.lower()):
                if len(word) >= min_length:
                    counts[word] += 1
        return [word for word, _ in counts.most_common(limit)]

    def focus_terms(self, text: str, limit: int = 3, min_length: int = 5) -> List[str]:
        """First words of at least ``min_length`` characters, in text order."""
        words = [w for w in text.lower().split() if len(w) >= min_length]
        return words[:limit]


class KeywordScoringStrategy(ScoringStrategy):
    """Substring keyword matching, the default scoring strategy."""

    def __init__(
        self,
        emotion_keywords: Optional[Mapping[str, Sequence[str]]] = None,
        positive_words: Optional[Sequence[str]] = None,
        negative_words: Optional[Sequence[str]] = None,
        sentiment_step: float = 0.2,
    ):
        """Initialize the strategy.

        Args:
            emotion_keywords: Emotion name to cue words.
            positive_words: Words that raise sentiment.
            negative_words: Words that lower sentiment.
            sentiment_step: Sentiment change per matched word.
        """
        self.emotion_keywords = {
            emotion: [k.lower() for k in keywords]
            for emotion, keywords in (emotion_keywords or EMOTION_KEYWORDS).items()
        }
        self.positive_words = [w.lower() for w in (positive_words or POSITIVE_WORDS)]
        self.negative_words = [w.lower() for w in (negative_words or NEGATIVE_WORDS)]
        self.sentiment_step = sentiment_step

    def emotion_hits(self, text: str) -> Dict[str, int]:
        lowered = text.lower()
        return {
            emotion: sum(1 for keyword in keywords if keyword in lowered)
            for emotion, keywords in self.emotion_keywords.items()
        }

    def sentiment(self, text: str) -> float:
        lowered = text.lower()
        score = 0.0
        for word in self.positive_words:
            if word in lowered:
                score += self.sentiment_step
        for word in self.negative_words:
            if word in lowered:
                score -= self.sentiment_step
        return max(-1.0, min(1.0, score))


_default_strategy: Optional[ScoringStrategy] = None


def get_default_scoring_strategy() -> ScoringStrategy:
    """Shared keyword strategy used when an enricher is given none."""
    global _default_strategy
    if _default_strategy is None:
        _default_strategy = KeywordScoringStrategy()
    return _default_strategy
