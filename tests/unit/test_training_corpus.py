from __future__ import annotations

import pytest

from errors import NotFoundError
from memory.rolling_history import RollingHistory
from memory.training_corpus import TrainingCorpus, keywords
from models.schemas import TrainingEntry


def test_keywords_drop_short_tokens_and_stopwords():
    assert keywords("How do I reset my password?") == ["reset", "password"]


def test_full_phrase_match_wins():
    corpus = TrainingCorpus()
    match = corpus.best_match("Hi there, what are your business hours?", 0.6)
    assert match is not None
    entry, score = match
    assert entry.category == "general"
    assert score == 1.0


def test_below_threshold_returns_none():
    assert TrainingCorpus().best_match("Hello", 0.6) is None


def test_ties_keep_first_entry():
    corpus = TrainingCorpus(
        [
            TrainingEntry(question="shipping delays", answer="first", category="a"),
            TrainingEntry(question="delays shipping", answer="second", category="b"),
        ]
    )
    entry, _ = corpus.best_match("are there shipping delays today", 0.5)
    assert entry.answer == "first"


def test_update_and_remove_validate_index():
    corpus = TrainingCorpus()
    replacement = TrainingEntry(question="Where is the office?", answer="Berlin.", category="general")
    corpus.update(0, replacement)
    assert corpus.list()[0].answer == "Berlin."
    removed = corpus.remove(0)
    assert removed.answer == "Berlin."
    assert len(corpus) == 4
    with pytest.raises(NotFoundError):
        corpus.remove(10)
    with pytest.raises(NotFoundError):
        corpus.update(-1, replacement)


def test_rolling_history_is_bounded():
    history = RollingHistory(limit=3)
    for i in range(5):
        history.append(1, "user", f"m{i}")
    assert [t["content"] for t in history.window(1)] == ["m2", "m3", "m4"]
    history.resize(2)
    assert [t["content"] for t in history.window(1)] == ["m3", "m4"]
    assert history.clear(1) is True
    assert history.window(1) == []
    assert history.clear(1) is False
