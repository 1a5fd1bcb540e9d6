"""Structured facts extracted from transcript text.

The rule-based :class:`~src.services.entity_extractor.EntityExtractor`
produces :class:`ExtractedEntity` instances; the segmenter attaches them to
chunks and the document store persists them per chunk.  Entities are
immutable: reprocessing a chunk regenerates its entity list wholesale.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Kinds of entity the extractor recognises."""

    PERSON = "person"
    DECISION = "decision"
    ACTION_ITEM = "action_item"
    RISK = "risk"
    DATE = "date"
    TOPIC = "topic"


class ExtractedEntity(BaseModel):
    """A single extracted fact with its provenance and confidence."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    value: str = Field(description="Matched text, stripped of cue words.")
    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="Rule specificity: anchored cues score above bare keywords.",
    )
    chunk_id: str | None = Field(
        default=None,
        description="Chunk the entity was found in; unset until attached by the segmenter.",
    )
    offset: int = Field(default=0, ge=0, description="Character offset within the source text.")
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Structured extras, e.g. assignee and due_date for action items.",
    )
    context: str = Field(default="", description="Up to three lines either side of the match.")

    def dedup_key(self) -> tuple[EntityType, str]:
        """Return the identity used when merging duplicates across chunks."""
        return (self.entity_type, " ".join(self.value.lower().split()).rstrip(".!?"))


class ExtractionResult(BaseModel):
    """Output of one extraction call."""

    model_config = ConfigDict(frozen=True)

    entities: list[ExtractedEntity] = Field(default_factory=list)
    truncated: bool = Field(
        default=False,
        description="True when the input exceeded the size ceiling and was cut before extraction.",
    )

    def of_type(self, entity_type: EntityType) -> list[ExtractedEntity]:
        return [e for e in self.entities if e.entity_type == entity_type]
