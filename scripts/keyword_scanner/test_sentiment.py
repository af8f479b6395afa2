#!/usr/bin/env python3
"""
Sentiment scorer tests - lexicon weights, intensifiers, labels and emotions
"""
import pytest

from scripts.keyword_scanner.models import SentimentLabel
from scripts.keyword_scanner.sentiment import Lexicon, SentimentScorer, label_for


class TestSentimentScorer:

    def setup_method(self):
        self.scorer = SentimentScorer(Lexicon.from_config({'positive': ['bon'], 'negative': ['mauvais']}))

    def test_balanced_text_is_neutral(self):
        result = self.scorer.score("C'est bon mais aussi mauvais")

        assert self.scorer.weights("C'est bon mais aussi mauvais") == (1.0, 1.0, 5)
        assert result.score == 0.0
        assert result.label == SentimentLabel.NEUTRAL
        assert result.confidence == pytest.approx(2 / 5)

    def test_intensifier_boosts_next_word(self):
        positive, negative, _ = self.scorer.weights("très bon")
        result = self.scorer.score("très bon")

        assert positive == 1.5
        assert negative == 0.0
        assert result.score == 1.0
        assert result.label == SentimentLabel.POSITIVE

    def test_intensifier_applies_once(self):
        positive, _, _ = self.scorer.weights("très bon bon")
        assert positive == 2.5

    def test_intensifier_is_not_scored_itself(self):
        assert self.scorer.weights("très") == (0.0, 0.0, 1)

    def test_no_signal_is_neutral_with_half_confidence(self):
        result = self.scorer.score("Le fleuve Congo traverse Kinshasa")
        assert result.label == SentimentLabel.NEUTRAL
        assert result.score == 0.0
        assert result.confidence == 0.5

    def test_empty_text(self):
        result = self.scorer.score('')
        assert result.label == SentimentLabel.NEUTRAL
        assert result.confidence == 0.5

    def test_deterministic(self):
        text = "Très mauvais jour, mais bon"
        assert self.scorer.score(text) == self.scorer.score(text)
        assert self.scorer.score_batch([text, text]) == [self.scorer.score(text)] * 2

    def test_negative_label(self):
        result = self.scorer.score("mauvais mauvais bon")
        assert result.label == SentimentLabel.NEGATIVE
        assert result.score == pytest.approx(-1 / 3)


class TestDefaultLexicon:

    def setup_method(self):
        self.scorer = SentimentScorer()

    def test_french_and_english_words(self):
        assert self.scorer.score("Bravo pour la paix").label == SentimentLabel.POSITIVE
        assert self.scorer.score("la guerre et la violence").label == SentimentLabel.NEGATIVE
        assert self.scorer.score("great news").label == SentimentLabel.POSITIVE

    def test_context_blends_author_history(self):
        base = self.scorer.score("succès")
        blended = self.scorer.score_with_context("succès", [-1.0, -1.0])

        assert base.score == 1.0
        assert blended.score == pytest.approx(0.6)
        assert blended.confidence == base.confidence

    def test_context_without_history_is_base_score(self):
        assert self.scorer.score_with_context("succès", []) == self.scorer.score("succès")

    def test_extract_emotions(self):
        emotions = SentimentScorer.extract_emotions("Quelle colère et quelle peur ce matin")
        assert emotions == ['anger', 'fear']
        assert SentimentScorer.extract_emotions("rien de spécial") == []


@pytest.mark.parametrize('score,label', [
    (0.5, SentimentLabel.POSITIVE),
    (0.1, SentimentLabel.NEUTRAL),
    (-0.1, SentimentLabel.NEUTRAL),
    (-0.11, SentimentLabel.NEGATIVE),
])
def test_label_thresholds(score, label):
    assert label_for(score) == label
