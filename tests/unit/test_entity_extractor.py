"""Unit tests for the rule-based EntityExtractor."""

from __future__ import annotations

import pytest

from src.models.entities import EntityType
from src.services.entity_extractor import EntityExtractor


@pytest.fixture
def extractor() -> EntityExtractor:
    return EntityExtractor()


# ======================================================================
# Decisions
# ======================================================================


class TestDecisions:
    def test_anchored_decision(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("Decision: we will proceed with plan A")
        decisions = result.of_type(EntityType.DECISION)
        assert len(decisions) == 1
        assert "proceed with plan A" in decisions[0].value
        assert decisions[0].confidence >= 0.9

    def test_phrase_decision(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("After some back and forth we decided to hire two contractors.")
        decisions = result.of_type(EntityType.DECISION)
        assert len(decisions) == 1
        assert decisions[0].value == "hire two contractors"
        assert decisions[0].confidence == pytest.approx(0.85)

    def test_overlapping_rules_report_one_decision(self, extractor: EntityExtractor) -> None:
        # Trips the anchored rule, the phrase rule and the bare keyword rule.
        result = extractor.extract("Decision: we agreed to move the launch to May")
        assert len(result.of_type(EntityType.DECISION)) == 1

    def test_near_duplicate_decisions_merged(self, extractor: EntityExtractor) -> None:
        text = "Decision: proceed with plan A\nResolved: proceed with plan A."
        assert len(extractor.extract(text).of_type(EntityType.DECISION)) == 1


# ======================================================================
# Action items, risks, dates, people
# ======================================================================


class TestActionItems:
    def test_owner_and_due_date(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("Action Item: update the budget spreadsheet - Owner: Bob - Due: Friday")
        items = result.of_type(EntityType.ACTION_ITEM)
        assert len(items) == 1
        assert items[0].value == "update the budget spreadsheet"
        assert items[0].metadata == {"assignee": "Bob", "due_date": "Friday"}

    def test_checkbox_with_mention(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("[ ] send the onboarding checklist @Carol")
        items = result.of_type(EntityType.ACTION_ITEM)
        assert items[0].value == "send the onboarding checklist"
        assert items[0].metadata["assignee"] == "Carol"

    def test_pronoun_is_not_an_assignee(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("We will finish the report by Thursday.")
        items = result.of_type(EntityType.ACTION_ITEM)
        assert items
        assert "assignee" not in items[0].metadata
        assert items[0].metadata["due_date"] == "Thursday"


class TestRisksDatesPeople:
    def test_anchored_risk(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("Risk: the vendor may miss the deadline")
        risks = result.of_type(EntityType.RISK)
        assert risks[0].confidence == pytest.approx(0.9)

    def test_dates(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("Ship on 2026-03-15, review next week, retro on March 20th.")
        values = {e.value for e in result.of_type(EntityType.DATE)}
        assert {"2026-03-15", "next week", "March 20th"} <= values

    def test_speaker_label_is_a_person(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("[00:30] Alice Johnson: morning all\nDecision: go")
        people = [e.value for e in result.of_type(EntityType.PERSON)]
        assert "Alice Johnson" in people
        assert "Decision" not in people

    def test_entity_context_surrounds_match(self, extractor: EntityExtractor) -> None:
        text = "\n".join(f"line {i}" for i in range(10)) + "\nRisk: budget overrun\n" + "tail"
        risk = extractor.extract(text).of_type(EntityType.RISK)[0]
        assert "Risk: budget overrun" in risk.context
        assert "line 7" in risk.context
        assert "line 6" not in risk.context


# ======================================================================
# Topics, sentiment, edge cases
# ======================================================================


class TestTopicsAndSentiment:
    def test_topics_ranked_by_frequency(self, extractor: EntityExtractor) -> None:
        text = "budget budget budget migration migration hiring"
        assert extractor.extract_topics(text, k=2) == ["budget", "migration"]

    def test_noise_markers_are_not_topics(self, extractor: EntityExtractor) -> None:
        text = "[CROSSTALK] budget [CROSSTALK] [CROSSTALK] budget review"
        assert extractor.extract_topics(text) == ["budget", "review"]

    def test_topic_confidence_capped(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("budget budget migration")
        topics = result.of_type(EntityType.TOPIC)
        assert topics
        assert all(t.confidence <= 0.5 for t in topics)

    def test_sentiment_range(self) -> None:
        assert EntityExtractor.estimate_sentiment("great progress, thanks") == 1.0
        assert EntityExtractor.estimate_sentiment("the release is delayed and blocked") == -1.0
        assert EntityExtractor.estimate_sentiment("neutral words only") == 0.0


class TestEdgeCases:
    def test_empty_text(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("   \n ")
        assert result.entities == []
        assert result.truncated is False

    def test_oversize_input_truncated(self) -> None:
        small = EntityExtractor(max_chars=40)
        text = "Decision: keep the scope small\n" + "filler " * 50 + "\nRisk: never seen"
        result = small.extract(text)
        assert result.truncated is True
        assert result.of_type(EntityType.RISK) == []
        assert len(result.of_type(EntityType.DECISION)) == 1

    def test_entities_sorted_by_offset(self, extractor: EntityExtractor) -> None:
        result = extractor.extract("Risk: late delivery\nDecision: add a buffer week")
        offsets = [e.offset for e in result.entities]
        assert offsets == sorted(offsets)
