#!/usr/bin/env python3
"""Test script for Content Chunker."""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from digest_index.services.chunking import ContentChunker, split_sentences


def _without_whitespace(text: str) -> str:
    return "".join(text.split())


def test_short_text_round_trip():
    """Text that fits is returned unchanged as the only chunk."""
    print("Testing chunk round-trip...")
    chunker = ContentChunker(max_chunk_size=100)

    for text in ["Short digest.", "  padded text with no terminator  ", "x" * 100, ""]:
        assert chunker.chunk(text) == [text]
    print("✓ Short texts round-trip exactly")


def test_long_text_is_packed_by_sentence():
    print("Testing greedy sentence packing...")
    chunker = ContentChunker(max_chunk_size=40)
    text = (
        "TechCrunch covered a funding round. Mashable wrote about phones! "
        "Was the keynote any good? Wired reviewed three laptops. The end."
    )

    chunks = chunker.chunk(text)

    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk) <= 40, chunk
    assert chunks[0] == "TechCrunch covered a funding round."
    print(f"✓ Split into {len(chunks)} chunks within the limit")

    assert _without_whitespace("".join(chunks)) == _without_whitespace(text)
    assert " ".join(chunks) == " ".join(split_sentences(text))
    print("✓ Chunks cover every sentence in order")


def test_oversized_sentence_is_not_split():
    chunker = ContentChunker(max_chunk_size=20)
    long_sentence = "This single sentence is far longer than twenty characters."
    text = f"Short one. {long_sentence} Tail."

    chunks = chunker.chunk(text)

    assert long_sentence in chunks
    assert chunks[0] == "Short one."
    assert chunks[-1] == "Tail."
    print("✓ Oversized sentence kept whole")


def test_text_without_terminator_is_returned_whole():
    chunker = ContentChunker(max_chunk_size=10)
    text = "no sentence boundary anywhere in this text"

    assert chunker.chunk(text) == [text]
    print("✓ Unterminated text returned as one chunk")


def test_max_chunk_size_override():
    chunker = ContentChunker(max_chunk_size=1000)
    text = "First sentence here. Second sentence here."

    assert chunker.chunk(text) == [text]
    assert chunker.chunk(text, max_chunk_size=25) == ["First sentence here.", "Second sentence here."]
    print("✓ Per-call size override applied")


def test_chunk_content_positions():
    chunker = ContentChunker(max_chunk_size=25)
    chunks = chunker.chunk_content("techcrunch-2024-01-15", "First sentence here. Second sentence here. Third.")

    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert {c.total_chunks for c in chunks} == {len(chunks)}
    assert {c.parent_id for c in chunks} == {"techcrunch-2024-01-15"}
    assert chunks[0].length == len(chunks[0].text)
    print(f"✓ {len(chunks)} chunks carry contiguous indices")


def test_invalid_size_rejected():
    try:
        ContentChunker(max_chunk_size=-5)
    except ValueError:
        print("✓ Negative chunk size rejected")
    else:
        raise AssertionError("negative chunk size accepted")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing Content Chunker")
    print("=" * 60)

    test_short_text_round_trip()
    test_long_text_is_packed_by_sentence()
    test_oversized_sentence_is_not_split()
    test_text_without_terminator_is_returned_whole()
    test_max_chunk_size_override()
    test_chunk_content_positions()
    test_invalid_size_rejected()

    print("\n✅ All chunker tests passed!")
