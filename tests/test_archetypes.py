"""Tests for the keyword archetype classifier."""

from qualification.archetypes import (
    DEFAULT_ARCHETYPE,
    ArchetypeClassifier,
    ArchetypeState,
)

from .conftest import NOW


class TestArchetypeClassifier:
    def setup_method(self):
        self.classifier = ArchetypeClassifier()

    def test_strict_winner(self):
        decision = self.classifier.classify("Can you explain the methodology and show me the data?")
        assert decision.key == "analytical"
        assert decision.scores["analytical"] == 3
        assert decision.confidence == 1.0
        assert not decision.retained

    def test_no_keywords_is_balanced(self):
        decision = self.classifier.classify("hello there")
        assert decision.key == DEFAULT_ARCHETYPE
        assert decision.profile.name == "Balanced"

    def test_tie_keeps_first_profile(self):
        # one analytical ("data") and one achiever ("goal") hit
        decision = self.classifier.classify("the data and the goal")
        assert decision.key == "analytical"

    def test_weak_evidence_keeps_previous(self):
        decision = self.classifier.classify("our team", previous="achiever")
        assert decision.key == "achiever"
        assert decision.retained

    def test_strong_evidence_switches(self):
        decision = self.classifier.classify("I worry about my team and people, trust matters", previous="achiever")
        assert decision.key == "relationship"
        assert not decision.retained

    def test_weak_evidence_from_balanced_switches(self):
        decision = self.classifier.classify("our team", previous=DEFAULT_ARCHETYPE)
        assert decision.key == "relationship"

    def test_keywords_match_whole_words(self):
        # "new" must not match inside "renewal"
        assert self.classifier.score("the renewal")["explorer"] == 0

    def test_unknown_profile_is_balanced(self):
        assert self.classifier.profile("pirate").key == DEFAULT_ARCHETYPE


class TestArchetypeState:
    def test_history_only_on_change(self):
        classifier = ArchetypeClassifier()
        state = ArchetypeState()
        state.update(classifier.classify("explain the data and the process"), now=NOW)
        state.update(classifier.classify("more metrics and numbers please"), now=NOW)
        assert state.current == "analytical"
        assert len(state.history) == 1
        assert state.history[0]["at"] == NOW.isoformat()

    def test_round_trip(self):
        state = ArchetypeState(current="explorer", confidence=0.5, history=[{"archetype": "explorer"}])
        assert ArchetypeState.from_dict(state.to_dict()) == state

    def test_from_empty(self):
        assert ArchetypeState.from_dict(None).current == DEFAULT_ARCHETYPE
