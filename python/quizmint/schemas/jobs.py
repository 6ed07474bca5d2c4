"""Generation job message schema.

One message drives one generation step. The body is published verbatim
to the question-builder endpoint (or the Celery queue) and redelivered
unchanged on overload retries.
"""

from uuid import UUID

from pydantic import BaseModel, Field

from quizmint.services.chunking import ChunkIterator


class JobIterator(BaseModel):
    last_index: int = Field(ge=0)
    incomplete_chunk: str = ""

    def to_chunk_iterator(self) -> ChunkIterator:
        return ChunkIterator(last_index=self.last_index, incomplete_chunk=self.incomplete_chunk)

    @classmethod
    def from_chunk_iterator(cls, iterator: ChunkIterator) -> "JobIterator":
        return cls(last_index=iterator.last_index, incomplete_chunk=iterator.incomplete_chunk)


class GenerationJob(BaseModel):
    """Request body for POST /webhooks/question-builder."""

    card_set_id: UUID
    iterator: JobIterator | None = None

    def chunk_iterator(self) -> ChunkIterator | None:
        return self.iterator.to_chunk_iterator() if self.iterator else None
