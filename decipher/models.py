"""Records produced by ingestion and consumed by the graph and reader.

Service responses are untrusted: they are validated against these models
before anything enters the library or the graph store. A response missing a
required field raises ``pydantic.ValidationError`` rather than producing a
record with blanks.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReadStatus(str, Enum):
    UNREAD = "unread"
    READING = "reading"
    READ = "read"


class ExplanationLevel(str, Enum):
    BEGINNER = "beginner"
    STANDARD = "standard"
    EXPERT = "expert"


class PaperMetadata(BaseModel):
    """Structured summary of one paper."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(min_length=1)
    classification: str = Field(alias="type", min_length=1)
    year: int
    venue: str = ""
    authors: list[str] = Field(default_factory=list)
    affiliations: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    citation_count: int = 0
    abstract: str = Field(min_length=1)
    problem_solved: str = Field(min_length=1)
    method_used: str = Field(min_length=1)
    implementation: str = ""
    results: str = ""
    impact: str = ""
    comparison: str = ""
    takeaway: str = Field(min_length=1)
    url: Optional[str] = None

    @field_validator("authors", "affiliations", "keywords", mode="before")
    @classmethod
    def _null_list(cls, value):
        return [] if value is None else value

    @field_validator("venue", "implementation", "results", "impact",
                     "comparison", mode="before")
    @classmethod
    def _null_text(cls, value):
        return "" if value is None else value

    @field_validator("citation_count", mode="before")
    @classmethod
    def _null_count(cls, value):
        return 0 if value is None else value

    @field_validator("url")
    @classmethod
    def _blank_url(cls, value):
        return value or None


class Note(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    text: str = Field(min_length=1)
    anchor: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class Document(BaseModel):
    """A library item: one successfully ingested paper."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    uploaded_at: datetime = Field(default_factory=_now)
    read_status: ReadStatus = ReadStatus.UNREAD
    rating: int = Field(0, ge=0, le=5)
    source_name: str = ""
    raw_text: str
    metadata: PaperMetadata
    notes: list[Note] = Field(default_factory=list)

    def summary(self):
        """Compact dict for library listings."""
        return {
            "id": self.id,
            "title": self.metadata.title,
            "type": self.metadata.classification,
            "year": self.metadata.year,
            "venue": self.metadata.venue,
            "keywords": self.metadata.keywords,
            "read_status": self.read_status.value,
            "uploaded_at": self.uploaded_at.isoformat(),
        }


class ConceptNode(BaseModel):
    """A concept in the graph. ``id`` is the dedup key."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True,
                              frozen=True)

    id: str = Field(min_length=1)
    group: int = Field(0, ge=0)
    weight: float = Field(alias="val", gt=0)
    description: str = Field("", alias="desc")

    @field_validator("description", mode="before")
    @classmethod
    def _null_desc(cls, value):
        return "" if value is None else value


class ConceptRelation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True,
                              frozen=True)

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    strength: float = Field(alias="value", gt=0)


class ConceptExtraction(BaseModel):
    """Validated output of the concept extraction service."""

    nodes: list[ConceptNode] = Field(default_factory=list)
    links: list[ConceptRelation] = Field(default_factory=list)


class GraphSnapshot(BaseModel):
    """Read-only view of the graph store at one point in time."""

    model_config = ConfigDict(frozen=True)

    nodes: tuple[ConceptNode, ...] = ()
    links: tuple[ConceptRelation, ...] = ()
