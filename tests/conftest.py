"""Shared test fixtures for the paper digest test suite."""

import json
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import fitz  # PyMuPDF
import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

SAMPLE_PDF_TEXT = (
    "Attention Is All You Need. The Transformer is a network architecture "
    "based solely on attention mechanisms."
)


@pytest.fixture
def sample_txt_path():
    return FIXTURES_DIR / "sample.txt"


@pytest.fixture
def sample_md_path():
    return FIXTURES_DIR / "sample.md"


@pytest.fixture
def sample_pdf_path(tmp_path):
    """A one-page PDF written with PyMuPDF."""
    path = tmp_path / "sample.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_textbox(fitz.Rect(72, 72, 520, 400), SAMPLE_PDF_TEXT, fontsize=11)
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def sample_metadata():
    """A complete metadata response in service shape."""
    return {
        "title": "Attention Is All You Need",
        "type": "methodology",
        "year": 2017,
        "venue": "NeurIPS",
        "authors": ["Vaswani, A.", "Shazeer, N."],
        "affiliations": ["Google Brain"],
        "url": "https://arxiv.org/abs/1706.03762",
        "keywords": ["Transformer", "Attention"],
        "citation_count": 85000,
        "abstract": "Sequence models built only from attention.",
        "problem_solved": "Recurrent models read words one at a time and forget.",
        "method_used": "A Transformer that looks at the whole sentence at once.",
        "implementation": "Encoder-decoder with multi-head attention.",
        "results": "State of the art translation, faster training.",
        "impact": "Foundation of later language models.",
        "comparison": "Parallelizes far better than RNNs.",
        "takeaway": "Attention can replace recurrence.",
    }


@pytest.fixture
def sample_concepts():
    """A concept extraction response in service shape."""
    return {
        "nodes": [
            {"id": "Transformer", "group": 1, "val": 20,
             "desc": "A network built entirely from attention."},
            {"id": "Attention Mechanism", "group": 1, "val": 15,
             "desc": "Lets a model focus on the important parts."},
            {"id": "RNN", "group": 2, "val": 10,
             "desc": "Reads text one word at a time."},
        ],
        "links": [
            {"source": "Transformer", "target": "Attention Mechanism", "value": 5},
            {"source": "Transformer", "target": "RNN", "value": 2},
        ],
    }


@pytest.fixture
def chat_response():
    """Factory for a mock chat-completions response with the given content."""
    def make(content):
        mock_message = MagicMock()
        mock_message.content = content
        mock_choice = MagicMock()
        mock_choice.message = mock_message
        response = MagicMock()
        response.choices = [mock_choice]
        return response
    return make


@pytest.fixture
def mock_openai_client(chat_response, sample_metadata):
    """Mock OpenAI client whose chat completions return sample metadata."""
    client = MagicMock()
    client.chat.completions.create.return_value = chat_response(json.dumps(sample_metadata))
    return client


class FakeService:
    """Scripted stand-in for ExtractionService.

    Each call is recorded as (kind, marker, start, end). A document's marker
    is the first word of its text; markers in ``fail_on`` raise
    ExtractionError, markers in ``rate_limit_on`` raise RateLimitError,
    markers in ``crash_on`` raise an unrelated IndexError, and
    ``concepts`` maps markers to concept extraction dicts.
    """

    def __init__(self, call_time=0.0):
        self.calls = []
        self.fail_on = set()
        self.fail_concepts_on = set()
        self.rate_limit_on = set()
        self.crash_on = set()
        self.concepts = {}
        self.explanations = []
        self.call_time = call_time
        self._lock = threading.Lock()

    def _record(self, kind, text):
        marker = text.split()[0] if text.split() else ""
        start = time.monotonic()
        if self.call_time:
            time.sleep(self.call_time)
        with self._lock:
            self.calls.append((kind, marker, start, time.monotonic()))
        return marker

    def extract_metadata(self, text):
        from decipher.extract import ExtractionError, RateLimitError
        from decipher.models import PaperMetadata

        marker = self._record("metadata", text)
        if marker in self.crash_on:
            raise IndexError("list index out of range")
        if marker in self.rate_limit_on:
            raise RateLimitError("429 Too Many Requests")
        if marker in self.fail_on:
            raise ExtractionError("Malformed JSON response")
        return PaperMetadata(
            title=f"Paper {marker}", classification="empirical", year=2020,
            abstract="An abstract.", problem_solved="A problem.",
            method_used="A method.", takeaway="A takeaway.",
            keywords=[marker],
        )

    def extract_concepts(self, text):
        from decipher.extract import ExtractionError
        from decipher.models import ConceptExtraction

        marker = self._record("concepts", text)
        if marker in self.fail_concepts_on:
            raise ExtractionError("Concept response failed validation")
        return ConceptExtraction.model_validate(
            self.concepts.get(marker, {"nodes": [], "links": []})
        )

    def explain_term(self, fragment, context, level):
        self.explanations.append((fragment, level))
        return f"{fragment} explained"


@pytest.fixture
def fake_service():
    return FakeService()


@pytest.fixture
def make_input():
    """Factory for a plaintext DocumentInput whose text starts with ``marker``."""
    from decipher.ingest import DocumentInput

    def make(marker, name=None):
        text = f"{marker} " + "This paper studies attention in sequence models. " * 3
        return DocumentInput(name or f"{marker}.txt", text.encode(), "text/plain")
    return make


@pytest.fixture
def slow_service():
    """FakeService whose calls take a measurable amount of time."""
    return FakeService(call_time=0.01)
