"""Tests for narration chunking."""

from __future__ import annotations

import pytest

from digest_to_podcast.tts import split_into_chunks, split_sentences


def test_empty_text_gives_no_chunks():
    assert split_into_chunks("") == []
    assert split_into_chunks(" \n\n  ") == []


def test_short_paragraphs_are_packed_together():
    chunks = split_into_chunks("aaa\n\nbbb\n\nccc", max_chunk_size=8)
    assert [c.text for c in chunks] == ["aaa\n\nbbb", "ccc"]
    assert [c.index for c in chunks] == [1, 2]


def test_long_paragraph_splits_on_sentences():
    para = "あいうえお。かきくけこ。さしすせそ。"
    chunks = split_into_chunks(para, max_chunk_size=12)
    assert [c.text for c in chunks] == ["あいうえお。かきくけこ。", "さしすせそ。"]


def test_oversized_sentence_is_kept_whole():
    long_sentence = "あ" * 30 + "。"
    chunks = split_into_chunks("短い。\n\n" + long_sentence + "次。", max_chunk_size=10)
    texts = [c.text for c in chunks]
    assert long_sentence in texts
    assert all(len(t) <= 10 or t == long_sentence for t in texts)


def test_no_content_is_lost():
    text = "First paragraph. It has two sentences.\n\n" + "Second one is longer. " * 20 + "\n\nThird."
    chunks = split_into_chunks(text, max_chunk_size=80)
    joined = " ".join(c.text for c in chunks)
    assert joined.split() == text.split()


def test_ascii_sentences_split_only_before_whitespace():
    assert split_sentences("Version 1.5 is out. Try it!") == ["Version 1.5 is out.", " Try it!"]


def test_invalid_size():
    with pytest.raises(ValueError):
        split_into_chunks("abc", max_chunk_size=0)
