"""
Content chunking service.
Splits long digest content into embedding-sized segments at sentence boundaries.
"""
import re
from typing import List, Optional
from dataclasses import dataclass

from digest_index.core.config import settings
from digest_index.core.logging import get_logger

logger = get_logger(__name__)

# A sentence is a run of non-terminal characters closed by one or more
# terminators; a trailing run without a terminator is its own sentence.
SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+")
TERMINATORS = (".", "!", "?")


@dataclass(frozen=True)
class Chunk:
    """Represents one chunk of a parent content unit."""
    parent_id: str
    index: int
    total_chunks: int
    text: str

    @property
    def length(self) -> int:
        """Get chunk content length."""
        return len(self.text)


def split_sentences(text: str) -> List[str]:
    """Split text into trimmed sentences, keeping their terminators."""
    sentences = []
    for match in SENTENCE_PATTERN.findall(text):
        sentence = match.strip()
        if sentence:
            sentences.append(sentence)
    return sentences


class ContentChunker:
    """
    Greedy sentence packer.

    Sentences are never split: a sentence longer than ``max_chunk_size``
    becomes a chunk of its own, and text with no terminator at all is
    returned whole.
    """

    def __init__(self, max_chunk_size: Optional[int] = None):
        self.max_chunk_size = max_chunk_size or settings.MAX_CHUNK_SIZE
        if self.max_chunk_size < 1:
            raise ValueError("max_chunk_size must be >= 1")

    def chunk(self, text: str, max_chunk_size: Optional[int] = None) -> List[str]:
        """
        Split text into chunk strings.

        Args:
            text: Content to split
            max_chunk_size: Overrides the chunker's configured size

        Returns:
            Ordered chunk texts. Text that already fits is returned unchanged
            as the only element.
        """
        limit = max_chunk_size or self.max_chunk_size

        if len(text) <= limit:
            return [text]

        if not any(terminator in text for terminator in TERMINATORS):
            logger.warning(
                "chunking_no_sentence_boundary",
                length=len(text),
                max_chunk_size=limit
            )
            return [text]

        chunks: List[str] = []
        current = ""

        for sentence in split_sentences(text):
            if current and len(current) + 1 + len(sentence) > limit:
                chunks.append(current)
                current = sentence
            else:
                current = f"{current} {sentence}" if current else sentence

        if current:
            chunks.append(current)

        if not chunks:
            return [text]

        oversized = sum(1 for c in chunks if len(c) > limit)
        logger.info(
            "content_chunked",
            original_length=len(text),
            chunks_created=len(chunks),
            max_chunk_size=limit,
            oversized_chunks=oversized
        )
        return chunks

    def chunk_content(self, parent_id: str, text: str, max_chunk_size: Optional[int] = None) -> List[Chunk]:
        """Split text and wrap each piece with its position in the parent."""
        pieces = self.chunk(text, max_chunk_size)
        total = len(pieces)
        return [
            Chunk(parent_id=parent_id, index=i, total_chunks=total, text=piece)
            for i, piece in enumerate(pieces)
        ]


chunker = ContentChunker()
