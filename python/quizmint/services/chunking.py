"""Chunk planning for question generation.

Source text is consumed in passes. The first pass covers the first
FIRST_CHUNK_SIZE characters and every later pass covers NEXT_CHUNK_SIZE
characters, prefixed with a short tail of context the previous pass handed
over. One token pays for up to PASSES_PER_TOKEN passes.

Pure functions, no I/O.
"""

import math
from dataclasses import dataclass

FIRST_CHUNK_SIZE = 6144
NEXT_CHUNK_SIZE = 5120
PASSES_PER_TOKEN = 8


@dataclass(frozen=True)
class ChunkIterator:
    """Position of the next pass.

    Attributes:
        last_index: Offset in the source text where the next slice starts.
        incomplete_chunk: Context carried over from the previous pass.
    """

    last_index: int
    incomplete_chunk: str = ""


@dataclass(frozen=True)
class Chunk:
    """One slice of source text to generate questions from.

    ``text`` includes the carried-over context; ``start``/``end`` delimit the
    novel portion in the source text.
    """

    text: str
    start: int
    end: int
    has_more: bool

    @property
    def is_first(self) -> bool:
        return self.start == 0


def count_passes(source_length: int) -> int:
    """Number of generation passes needed to cover ``source_length`` chars."""
    remaining = max(source_length - FIRST_CHUNK_SIZE, 0)
    return 1 + math.ceil(remaining / NEXT_CHUNK_SIZE)


def calculate_required_tokens(source_length: int) -> int:
    """Tokens billed for a source of ``source_length`` characters.

    >>> calculate_required_tokens(0)
    1
    >>> calculate_required_tokens(FIRST_CHUNK_SIZE + NEXT_CHUNK_SIZE * 8 + 1)
    2
    """
    return (count_passes(source_length) - 1) // PASSES_PER_TOKEN + 1


def next_chunk(source_text: str, iterator: ChunkIterator | None = None) -> Chunk:
    """Return the slice the next pass should process."""
    if iterator is None:
        end = FIRST_CHUNK_SIZE
        return Chunk(
            text=source_text[:end],
            start=0,
            end=end,
            has_more=len(source_text) > end,
        )

    start = iterator.last_index
    end = start + NEXT_CHUNK_SIZE
    return Chunk(
        text=iterator.incomplete_chunk + source_text[start:end],
        start=start,
        end=end,
        has_more=len(source_text) > end,
    )


def advance(chunk: Chunk, incomplete_chunk: str | None) -> ChunkIterator:
    """Iterator for the pass following ``chunk``."""
    return ChunkIterator(last_index=chunk.end, incomplete_chunk=incomplete_chunk or "")
