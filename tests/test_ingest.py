"""Tests for decipher.ingest — text derivation and sequential batch ingestion."""

import json
from unittest.mock import MagicMock, patch

import pytest


class TestExtractTextFromPdf:
    def test_extracts_text(self, sample_pdf_path):
        from decipher.ingest import extract_text_from_pdf

        text = extract_text_from_pdf(sample_pdf_path.read_bytes())
        assert "Transformer" in text

    def test_returns_empty_for_garbage(self):
        from decipher.ingest import extract_text_from_pdf

        assert extract_text_from_pdf(b"not really a pdf") == ""

    def test_document_closed_when_page_fails(self):
        from decipher.ingest import extract_text_from_pdf

        page = MagicMock()
        page.get_text.side_effect = RuntimeError("broken content stream")
        doc = MagicMock()
        doc.__enter__.return_value = doc
        doc.__iter__.return_value = iter([page])

        with patch("decipher.ingest.fitz.open", return_value=doc):
            assert extract_text_from_pdf(b"%PDF-1.7") == ""

        doc.__exit__.assert_called_once()


class TestDeriveText:
    def test_plaintext(self, sample_txt_path):
        from decipher.ingest import DocumentInput, derive_text

        text = derive_text(DocumentInput.from_path(sample_txt_path))
        assert text.startswith("Attention Is All You Need")

    def test_markdown(self, sample_md_path):
        from decipher.ingest import DocumentInput, derive_text

        text = derive_text(DocumentInput.from_path(sample_md_path))
        assert "BERT" in text

    def test_pdf(self, sample_pdf_path):
        from decipher.ingest import DocumentInput, derive_text

        text = derive_text(DocumentInput.from_path(sample_pdf_path))
        assert "attention" in text.lower()
        assert "placeholder" not in text

    def test_content_type_routes_plaintext(self):
        from decipher.ingest import DocumentInput, derive_text

        body = "Plain words about attention mechanisms and encoders, long enough."
        text = derive_text(DocumentInput("upload", body.encode(), "text/plain"))
        assert text == body

    def test_short_text_gets_placeholder(self):
        from decipher.ingest import DocumentInput, derive_text

        text = derive_text(DocumentInput("tiny.txt", b"Too short."))
        assert "placeholder" in text
        assert "tiny.txt" in text

    def test_binary_format_gets_placeholder(self):
        from decipher.ingest import DocumentInput, derive_text

        text = derive_text(DocumentInput("paper.docx", b"PK\x03\x04" + b"\x00" * 200))
        assert "placeholder" in text
        assert "paper.docx" in text

    def test_unreadable_pdf_gets_placeholder(self):
        from decipher.ingest import DocumentInput, derive_text

        text = derive_text(DocumentInput("broken.pdf", b"%PDF-garbage"))
        assert "broken.pdf" in text

    def test_placeholder_is_long_enough(self):
        from decipher.config import MIN_TEXT_LENGTH
        from decipher.ingest import placeholder_text

        assert len(placeholder_text("a.pdf")) >= MIN_TEXT_LENGTH


@pytest.fixture
def ingest_env(fake_service):
    """Library, graph, ingestor with recorded sleeps."""
    from decipher.graph import GraphStore
    from decipher.ingest import Ingestor
    from decipher.library import Library

    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    library = Library()
    graph = GraphStore()
    ingestor = Ingestor(library, graph, fake_service, delay=3.0, cooldown=5.0,
                        sleep=fake_sleep)
    return library, graph, ingestor, sleeps


class TestBatchBound:
    async def test_rejects_oversized_batch_before_processing(self, ingest_env,
                                                             fake_service, make_input):
        from decipher.ingest import BatchTooLargeError

        library, graph, ingestor, sleeps = ingest_env
        inputs = [make_input(f"p{i}") for i in range(51)]

        with pytest.raises(BatchTooLargeError) as excinfo:
            await ingestor.ingest(inputs)

        assert "Too many files (51)" in str(excinfo.value)
        assert fake_service.calls == []
        assert len(library) == 0
        assert sleeps == []

    async def test_accepts_batch_at_limit(self, ingest_env, make_input):
        library, graph, ingestor, sleeps = ingest_env
        inputs = [make_input(f"p{i}") for i in range(50)]

        report = await ingestor.ingest(inputs)
        assert report.succeeded == 50

    async def test_empty_batch(self, ingest_env):
        library, graph, ingestor, sleeps = ingest_env

        report = await ingestor.ingest([])
        assert report.attempted == 0
        assert report.summary == "Ingested 0 of 0 documents"


class TestSequentialIngestion:
    async def test_calls_never_overlap(self, slow_service, make_input):
        from decipher.graph import GraphStore
        from decipher.ingest import Ingestor
        from decipher.library import Library

        service = slow_service
        ingestor = Ingestor(Library(), GraphStore(), service, delay=0)
        await ingestor.ingest([make_input(m) for m in ("one", "two", "three")])

        assert [(kind, marker) for kind, marker, _, _ in service.calls] == [
            ("metadata", "one"), ("concepts", "one"),
            ("metadata", "two"), ("concepts", "two"),
            ("metadata", "three"), ("concepts", "three"),
        ]
        for prev, nxt in zip(service.calls, service.calls[1:]):
            assert nxt[2] >= prev[3]

    async def test_delay_between_documents(self, ingest_env, make_input):
        library, graph, ingestor, sleeps = ingest_env

        await ingestor.ingest([make_input(m) for m in ("one", "two", "three")])
        assert sleeps == [3.0, 3.0]

    async def test_single_document_has_no_delay(self, ingest_env, make_input):
        library, graph, ingestor, sleeps = ingest_env

        await ingestor.ingest([make_input("one")])
        assert sleeps == []


class TestPartialFailure:
    async def test_failed_document_is_skipped(self, ingest_env, fake_service, make_input):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.fail_on.add("two")

        report = await ingestor.ingest([make_input(m) for m in ("one", "two", "three")])

        titles = [doc.metadata.title for doc in library]
        # Most recent first
        assert titles == ["Paper three", "Paper one"]
        assert report.attempted == 3
        assert report.succeeded == 2
        assert report.summary == "Ingested 2 of 3 documents"
        assert [name for name, _ in report.failures] == ["two.txt"]
        assert report.document_ids == list(reversed(library.ids()))

    async def test_concept_failure_also_skips(self, ingest_env, fake_service,
                                              make_input, sample_concepts):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.concepts["one"] = sample_concepts
        fake_service.fail_concepts_on.add("one")

        report = await ingestor.ingest([make_input("one")])

        assert report.succeeded == 0
        assert len(library) == 0
        assert len(graph) == 0

    async def test_rate_limit_adds_cooldown(self, ingest_env, fake_service, make_input):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.rate_limit_on.add("one")

        report = await ingestor.ingest([make_input(m) for m in ("one", "two")])

        assert sleeps == [5.0, 3.0]
        assert report.succeeded == 1
        assert "429" in report.failures[0][1]

    async def test_ordinary_failure_has_no_cooldown(self, ingest_env, fake_service,
                                                    make_input):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.fail_on.add("one")

        await ingestor.ingest([make_input(m) for m in ("one", "two")])
        assert sleeps == [3.0]

    async def test_unexpected_error_does_not_abort_batch(self, ingest_env, fake_service,
                                                         make_input):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.crash_on.add("two")

        report = await ingestor.ingest([make_input(m) for m in ("one", "two", "three")])

        assert [doc.metadata.title for doc in library] == ["Paper three", "Paper one"]
        assert report.succeeded == 2
        assert report.failures == [("two.txt", "IndexError: list index out of range")]
        assert ("metadata", "three") in [(k, m) for k, m, _, _ in fake_service.calls]

    async def test_empty_choices_response_is_a_document_failure(self, chat_response,
                                                                sample_metadata,
                                                                sample_concepts,
                                                                make_input):
        from decipher.extract import ExtractionService
        from decipher.graph import GraphStore
        from decipher.ingest import Ingestor
        from decipher.library import Library

        empty = MagicMock()
        empty.choices = []
        good_metadata = chat_response(json.dumps(sample_metadata))
        good_concepts = chat_response(json.dumps(sample_concepts))
        client = MagicMock()
        client.chat.completions.create.side_effect = [
            good_metadata, good_concepts,
            empty,
            good_metadata, good_concepts,
        ]
        library = Library()
        ingestor = Ingestor(library, GraphStore(), ExtractionService(client), delay=0)

        report = await ingestor.ingest([make_input(m) for m in ("one", "two", "three")])

        assert report.succeeded == 2
        assert len(library) == 2
        assert report.failures[0][0] == "two.txt"
        assert "Unexpected response shape" in report.failures[0][1]

    async def test_every_document_failing_still_completes(self, ingest_env,
                                                          fake_service, make_input):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.fail_on.update({"one", "two"})

        report = await ingestor.ingest([make_input(m) for m in ("one", "two")])
        assert report.succeeded == 0
        assert len(report.failures) == 2


class TestDocumentsAndGraph:
    async def test_new_document_defaults(self, ingest_env, make_input):
        from decipher.models import ReadStatus

        library, graph, ingestor, sleeps = ingest_env
        await ingestor.ingest([make_input("one"), make_input("two")])

        docs = list(library)
        assert all(d.read_status == ReadStatus.UNREAD for d in docs)
        assert all(d.notes == [] for d in docs)
        assert docs[0].id != docs[1].id
        assert docs[1].source_name == "one.txt"
        assert docs[1].raw_text.startswith("one ")

    async def test_graph_merged_incrementally(self, ingest_env, fake_service,
                                              make_input, sample_concepts):
        library, graph, ingestor, sleeps = ingest_env
        fake_service.concepts["one"] = sample_concepts
        fake_service.concepts["two"] = {
            "nodes": [
                {"id": "Transformer", "group": 3, "val": 30, "desc": "Different text"},
                {"id": "BERT", "group": 3, "val": 18, "desc": "Bidirectional model"},
            ],
            "links": [{"source": "BERT", "target": "Transformer", "value": 8}],
        }
        seen = []

        def on_document(document):
            seen.append((len(library), len(graph), graph.link_count))

        await ingestor.ingest([make_input("one"), make_input("two")],
                              on_document=on_document)

        assert seen == [(1, 3, 2), (2, 4, 3)]
        assert graph.get("Transformer").description == "A network built entirely from attention."

    async def test_progress_callbacks(self, ingest_env, make_input):
        library, graph, ingestor, sleeps = ingest_env
        events = []

        async def on_progress(stage, detail, percent):
            events.append((stage, detail, percent))

        await ingestor.ingest([make_input("one"), make_input("two")], on_progress)

        assert events[0] == ("ingesting", "one.txt (1/2)", 0)
        assert events[1] == ("ingesting", "two.txt (2/2)", 50)
        assert events[-1] == ("complete", "Ingested 2 of 2 documents", 100)
