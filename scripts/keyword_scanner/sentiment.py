#!/usr/bin/env python3
"""
Lexicon sentiment scoring for the Sentinel keyword scanner
Deterministic French/English word lists with a one-shot intensifier multiplier
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import SentimentLabel, SentimentResult

logger = logging.getLogger(__name__)

POSITIVE_WORDS = (
    'bon', 'bien', 'excellent', 'super', 'génial', 'merci', 'bravo',
    'heureux', 'content', 'satisfait', 'amélioration', 'progrès',
    'succès', 'réussite', 'victoire', 'paix', 'sécurité', 'développement',
    'good', 'great', 'amazing', 'love', 'happy', 'peace',
)

NEGATIVE_WORDS = (
    'mauvais', 'mal', 'terrible', 'horrible', 'problème', 'crise',
    'danger', 'échec', 'corruption', 'violence', 'guerre', 'conflit',
    'mort', 'blessé', 'attaque', 'peur', 'inquiétude', 'colère',
    'bad', 'hate', 'angry', 'war', 'death',
)

INTENSIFIERS = (
    'très', 'beaucoup', 'extrêmement', 'vraiment', 'trop',
    'very', 'extremely', 'really', 'too', 'so',
)

EMOTION_PATTERNS = {
    'anger': ('colère', 'furieux', 'angry', 'mad', 'rage'),
    'joy': ('joie', 'heureux', 'happy', 'joy', 'glad'),
    'fear': ('peur', 'effrayé', 'scared', 'afraid', 'fear'),
    'sadness': ('triste', 'malheureux', 'sad', 'unhappy', 'depressed'),
    'surprise': ('surpris', 'étonné', 'surprised', 'shocked', 'amazed'),
}

INTENSIFIER_MULTIPLIER = 1.5
LABEL_THRESHOLD = 0.1
NO_SIGNAL_CONFIDENCE = 0.5
CONTEXT_WEIGHT = 0.2

_EDGE_PUNCTUATION = '.,;:!?«»"\'()[]…'


@dataclass(frozen=True)
class Lexicon:
    positive: Tuple[str, ...] = POSITIVE_WORDS
    negative: Tuple[str, ...] = NEGATIVE_WORDS
    intensifiers: Tuple[str, ...] = INTENSIFIERS
    intensifier_multiplier: float = INTENSIFIER_MULTIPLIER

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Sequence[str]]] = None) -> 'Lexicon':
        """Build from the ``sentiment.lexicon`` section of config.json; missing lists keep defaults"""
        cfg = cfg or {}
        return cls(
            positive=tuple(w.lower() for w in cfg.get('positive', POSITIVE_WORDS)),
            negative=tuple(w.lower() for w in cfg.get('negative', NEGATIVE_WORDS)),
            intensifiers=tuple(w.lower() for w in cfg.get('intensifiers', INTENSIFIERS)),
            intensifier_multiplier=float(cfg.get('intensifier_multiplier', INTENSIFIER_MULTIPLIER)),
        )


def label_for(score: float) -> SentimentLabel:
    if score > LABEL_THRESHOLD:
        return SentimentLabel.POSITIVE
    if score < -LABEL_THRESHOLD:
        return SentimentLabel.NEGATIVE
    return SentimentLabel.NEUTRAL


class SentimentScorer:
    """Pure lexicon scorer; holds only its immutable lexicon"""

    def __init__(self, lexicon: Optional[Lexicon] = None):
        self.lexicon = lexicon or Lexicon()
        self._intensifiers = frozenset(self.lexicon.intensifiers)

    def weights(self, text: str) -> Tuple[float, float, int]:
        """Return (positive_weight, negative_weight, token_count)"""
        tokens = (text or '').lower().split()
        positive = 0.0
        negative = 0.0
        intensified = False

        for token in tokens:
            if token.strip(_EDGE_PUNCTUATION) in self._intensifiers:
                intensified = True
                continue

            multiplier = self.lexicon.intensifier_multiplier if intensified else 1.0
            if any(word in token for word in self.lexicon.positive):
                positive += multiplier
                intensified = False
                multiplier = 1.0
            if any(word in token for word in self.lexicon.negative):
                negative += multiplier
                intensified = False

        return positive, negative, len(tokens)

    def score(self, text: str) -> SentimentResult:
        positive, negative, token_count = self.weights(text)
        total = positive + negative
        if total == 0:
            return SentimentResult(SentimentLabel.NEUTRAL, 0.0, NO_SIGNAL_CONFIDENCE)

        score = (positive - negative) / total
        confidence = min(total / token_count, 1.0)
        return SentimentResult(label_for(score), score, confidence)

    def score_batch(self, texts: Iterable[str]) -> List[SentimentResult]:
        return [self.score(text) for text in texts]

    def score_with_context(self, text: str, previous_scores: Optional[Sequence[float]] = None) -> SentimentResult:
        """Blend with the mean of an author's previous scores (20% weight)"""
        base = self.score(text)
        if not previous_scores:
            return base
        history = sum(previous_scores) / len(previous_scores)
        blended = base.score * (1 - CONTEXT_WEIGHT) + history * CONTEXT_WEIGHT
        return SentimentResult(label_for(blended), blended, base.confidence)

    @staticmethod
    def extract_emotions(text: str, patterns: Optional[Dict[str, Sequence[str]]] = None) -> List[str]:
        normalized = (text or '').lower()
        return [
            emotion
            for emotion, words in (patterns or EMOTION_PATTERNS).items()
            if any(word in normalized for word in words)
        ]
