"""Tests for discourse/models.py dataclasses."""

from dataclasses import FrozenInstanceError

import pytest

from discourse.models import Article, Citation, IntentKind, Utterance


def test_answer_intents():
    assert IntentKind.POTENTIAL_ANSWER.is_answer
    assert IntentKind.FURTHER_DETAILS.is_answer
    assert not IntentKind.POTENTIAL_ANSWER.is_question


def test_question_intents():
    assert IntentKind.ORIGINAL_QUESTION.is_question
    assert IntentKind.INFORMATION_REQUEST.is_question
    assert not IntentKind.INFORMATION_REQUEST.is_answer


def test_intent_value_is_its_name():
    assert IntentKind("POTENTIAL_ANSWER") is IntentKind.POTENTIAL_ANSWER


def test_utterance_defaults():
    u = Utterance(speaker_role="Moderator", content="Welcome.", intent=IntentKind.ORIGINAL_QUESTION)
    assert u.citations == ()
    assert u.retrieved_info == ()
    assert u.is_background is False
    assert "T" in u.timestamp


def test_utterance_is_immutable():
    u = Utterance(speaker_role="Economist", content="Costs fell.", intent=IntentKind.POTENTIAL_ANSWER)
    with pytest.raises(FrozenInstanceError):
        u.content = "changed"  # type: ignore[misc]


def test_article_default_lists_are_independent():
    a, b = Article(title="A"), Article(title="B")
    a.citations.append(Citation("1", "t", "https://x"))
    assert b.citations == []
