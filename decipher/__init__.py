"""decipher — Digest research papers into summaries and a concept graph."""

from .config import GROUP_COLORS, MAX_BATCH_SIZE
from .extract import ExplanationError, ExtractionError, ExtractionService, RateLimitError
from .graph import GraphStore, prepare_viz_data
from .ingest import (
    BatchReport,
    BatchTooLargeError,
    DocumentInput,
    Ingestor,
    derive_text,
    extract_text_from_pdf,
    extract_text_from_plaintext,
)
from .layout import LayoutEngine, LayoutRunner, LayoutSettings, LayoutState, step
from .library import Library
from .models import (
    ConceptExtraction,
    ConceptNode,
    ConceptRelation,
    Document,
    ExplanationLevel,
    GraphSnapshot,
    Note,
    PaperMetadata,
    ReadStatus,
)
from .resolver import ResolutionState, TermResolver

__all__ = [
    "GROUP_COLORS",
    "MAX_BATCH_SIZE",
    "ExplanationError",
    "ExtractionError",
    "ExtractionService",
    "RateLimitError",
    "GraphStore",
    "prepare_viz_data",
    "BatchReport",
    "BatchTooLargeError",
    "DocumentInput",
    "Ingestor",
    "derive_text",
    "extract_text_from_pdf",
    "extract_text_from_plaintext",
    "LayoutEngine",
    "LayoutRunner",
    "LayoutSettings",
    "LayoutState",
    "step",
    "Library",
    "ConceptExtraction",
    "ConceptNode",
    "ConceptRelation",
    "Document",
    "ExplanationLevel",
    "GraphSnapshot",
    "Note",
    "PaperMetadata",
    "ReadStatus",
    "ResolutionState",
    "TermResolver",
]
