"""Tests for the emotional context enricher."""

from datetime import datetime, timedelta

import pytest

from agent_context.enrichers.emotional import EmotionalContextEnricher, extract_context_text
from agent_context.enrichment.providers import EmotionState
from agent_context.enrichment.types import EnrichmentRequest

from tests.helpers.fakes import FakeEmotionModule

HAPPY_MESSAGE = "I'm so happy about this success!"


async def enrich(enricher, **context):
    result = await enricher.enrich(EnrichmentRequest(agent_id="a1", context=context))
    return result, result.enriched_context["emotional_context"]


async def make_enricher(module=None):
    enricher = EmotionalContextEnricher(emotion_accessor=lambda: module)
    await enricher.initialize()
    return enricher


class TestContextText:
    """Test free-text extraction."""

    def test_joins_text_fields(self):
        """Test that message, topic, description and keywords are joined."""
        text = extract_context_text(
            {"message": "hi", "topic": "plans", "description": "trip", "keywords": ["rome", 3]}
        )
        assert text == "hi plans trip rome"


class TestEmotionalEnrichment:
    """Test emotional enrichment with and without an emotion module."""

    @pytest.mark.asyncio
    async def test_without_module(self):
        """Test the neutral fallback that still scores the text."""
        enricher = await make_enricher(None)

        result, emotional = await enrich(enricher, message=HAPPY_MESSAGE)

        assert emotional["available"] is False
        assert emotional["current_emotion"]["emotion"] == "neutral"
        assert emotional["emotional_trends"]["dominant_emotion"] == "neutral"
        assert emotional["contextual_emotions"] == {"happy": pytest.approx(0.2)}
        assert emotional["recommendations"] == []
        assert result.confidence == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_with_module(self):
        """Test that state and history boost contextual relevance."""
        now = datetime.now()
        history = [
            EmotionState("happy", 0.5, timestamp=now - timedelta(seconds=60)),
            EmotionState("sad", 0.3, timestamp=now - timedelta(seconds=30)),
            EmotionState("happy", 0.6, timestamp=now - timedelta(seconds=10)),
        ]
        current = EmotionState("happy", 0.8, confidence=0.9, triggers=["praise"])
        enricher = await make_enricher(FakeEmotionModule(current, history))

        result, emotional = await enrich(enricher, message=HAPPY_MESSAGE)

        assert emotional["available"] is True
        assert emotional["current_emotion"]["emotion"] == "happy"
        assert emotional["current_emotion"]["triggers"] == ["praise"]
        assert len(emotional["emotional_history"]) == 3
        assert emotional["emotional_trends"]["dominant_emotion"] == "happy"
        assert emotional["contextual_emotions"]["happy"] == pytest.approx(
            0.2 + 0.8 * 0.3 + 2 / 5 * 0.2
        )
        insights = emotional["insights"]
        assert insights["current_state"]["is_intense"] is True
        assert insights["contextual_relevance"]["most_relevant_emotion"] == "happy"
        assert len(insights["patterns"]["recent_changes"]) == 2
        types = [r["type"] for r in emotional["recommendations"]]
        assert "engagement" in types
        assert 0.5 < result.confidence <= 0.95

    @pytest.mark.asyncio
    async def test_threshold_drops_weak_emotions(self):
        """Test that emotions without cues or state are left out."""
        enricher = await make_enricher(FakeEmotionModule(EmotionState("calm", 0.2)))

        _, emotional = await enrich(enricher, message="plain words only")

        assert emotional["contextual_emotions"] == {}
        assert "contextual_relevance" not in emotional["insights"]

    @pytest.mark.asyncio
    async def test_mild_sadness_recommendation(self):
        """Test the gentle support recommendation."""
        enricher = await make_enricher(FakeEmotionModule(EmotionState("sad", 0.2)))

        _, emotional = await enrich(enricher, message="hello")

        assert [r["type"] for r in emotional["recommendations"]] == ["support"]

    @pytest.mark.asyncio
    async def test_health(self):
        """Test health with and without an emotion module."""
        missing = await make_enricher(None)
        present = await make_enricher(FakeEmotionModule(EmotionState("happy", 0.4)))

        missing_health = await missing.health_check()
        present_health = await present.health_check()

        assert missing_health.healthy is False
        assert "not available" in missing_health.details["error"]
        assert present_health.healthy is True
        assert present_health.details["current_emotion"] == "happy"


class TestEmotionCalculations:
    """Test trend and volatility calculations."""

    def test_trends_without_history(self):
        """Test that trends fall back to the current state."""
        enricher = EmotionalContextEnricher()
        trends = enricher.calculate_trends([], EmotionState("curious", 0.6))

        assert trends == {"dominant_emotion": "curious", "average_intensity": 0.6, "volatility": 0.0}

    def test_volatility(self):
        """Test intensity changes plus emotion-change penalties."""
        now = datetime(2024, 3, 12, 10, 0)
        history = [
            EmotionState("happy", 0.5, timestamp=now - timedelta(seconds=60)),
            EmotionState("sad", 0.3, timestamp=now - timedelta(seconds=30)),
        ]
        current = EmotionState("happy", 0.8, timestamp=now)
        enricher = EmotionalContextEnricher()

        volatility = enricher.calculate_volatility(history, current, now=now)

        assert volatility == pytest.approx(((0.2 + 0.5) + (0.5 + 0.5)) / 2)

    def test_volatility_ignores_old_readings(self):
        """Test that readings outside the window are not counted."""
        now = datetime(2024, 3, 12, 10, 0)
        history = [
            EmotionState("happy", 0.1, timestamp=now - timedelta(hours=2)),
            EmotionState("sad", 0.9, timestamp=now - timedelta(hours=1)),
        ]
        enricher = EmotionalContextEnricher()

        assert enricher.calculate_volatility(history, None, now=now) == 0.0

    def test_volatility_is_capped(self):
        """Test that volatility never exceeds one."""
        now = datetime(2024, 3, 12, 10, 0)
        history = [
            EmotionState("happy", 0.0, timestamp=now),
            EmotionState("sad", 1.0, timestamp=now),
        ]
        enricher = EmotionalContextEnricher()

        assert enricher.calculate_volatility(history, None, now=now) == 1.0
