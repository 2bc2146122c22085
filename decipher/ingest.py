"""Batch ingestion: derive text, call the extraction services, fill the library.

Documents in a batch are processed strictly one at a time. Calls for
document N+1 are never issued before both calls for document N have
settled, and a fixed delay separates documents to stay under the service's
rate limits. A failed document is skipped; it never aborts the batch.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import fitz  # PyMuPDF

from .config import (
    INTER_CALL_DELAY,
    MAX_BATCH_SIZE,
    MIN_TEXT_LENGTH,
    PLAINTEXT_EXTENSIONS,
    RATE_LIMIT_COOLDOWN,
)
from .extract import ExtractionError, RateLimitError
from .models import Document

logger = logging.getLogger(__name__)


class BatchTooLargeError(ValueError):
    """Raised before processing when a batch exceeds the size bound."""

    def __init__(self, size, limit):
        self.size = size
        self.limit = limit
        super().__init__(f"Too many files ({size}). Maximum is {limit}.")


@dataclass
class DocumentInput:
    """One uploaded file: its name, raw bytes and optional MIME type."""

    name: str
    content: bytes
    content_type: Optional[str] = None

    @classmethod
    def from_path(cls, path):
        path = Path(path)
        return cls(name=path.name, content=path.read_bytes())


@dataclass
class BatchReport:
    attempted: int
    succeeded: int = 0
    document_ids: list = field(default_factory=list)
    failures: list = field(default_factory=list)  # (name, reason)

    @property
    def summary(self):
        return f"Ingested {self.succeeded} of {self.attempted} documents"

    def to_dict(self):
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "document_ids": list(self.document_ids),
            "failures": [{"name": n, "reason": r} for n, r in self.failures],
            "summary": self.summary,
        }


def extract_text_from_pdf(content):
    """Extract text from PDF bytes using PyMuPDF.

    Returns the page texts joined by blank lines, or "" if the PDF cannot
    be read.
    """
    try:
        pages = []
        with fitz.open(stream=content, filetype="pdf") as doc:
            for page in doc:
                text = page.get_text()
                if text.strip():
                    pages.append(text.strip())
        return "\n\n".join(pages)
    except Exception as e:
        logger.warning("Could not extract text from PDF: %s", e)
        return ""


def extract_text_from_plaintext(content):
    return content.decode("utf-8", errors="replace").replace("\x00", "").strip()


def placeholder_text(name):
    return (
        f"Title: {name}\n"
        f"Abstract: This is a placeholder for the content of {name}. "
        "Its text could not be extracted, so only the file name is known."
    )


def derive_text(item: DocumentInput):
    """Return usable text for an input, substituting a placeholder if needed.

    Plaintext is decoded, PDFs are parsed; other binary formats and texts
    shorter than MIN_TEXT_LENGTH get a labelled placeholder naming the file,
    so extraction always receives non-trivial input.
    """
    ext = Path(item.name).suffix.lower()
    content_type = (item.content_type or "").lower()

    if ext in PLAINTEXT_EXTENSIONS or content_type.startswith("text/"):
        text = extract_text_from_plaintext(item.content)
    elif ext == ".pdf" or content_type == "application/pdf":
        text = extract_text_from_pdf(item.content)
    else:
        logger.info("Not directly parseable: %s", item.name)
        text = ""

    if len(text.strip()) < MIN_TEXT_LENGTH:
        return placeholder_text(item.name)
    return text


async def _notify(callback, *args):
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Ingestor:
    """Sequential batch ingestion into a library and a graph store.

    Args:
        library: Library that receives new documents
        graph: GraphStore that receives extracted concepts
        service: object with blocking ``extract_metadata(text)`` and
            ``extract_concepts(text)`` methods (see ExtractionService)
        max_batch_size: largest accepted batch
        delay: seconds to wait before every document after the first
        cooldown: extra seconds to wait after a rate-limited document
        sleep: awaitable sleep function, replaceable in tests
    """

    def __init__(self, library, graph, service, *, max_batch_size=MAX_BATCH_SIZE,
                 delay=INTER_CALL_DELAY, cooldown=RATE_LIMIT_COOLDOWN,
                 sleep=asyncio.sleep):
        self.library = library
        self.graph = graph
        self.service = service
        self.max_batch_size = max_batch_size
        self.delay = delay
        self.cooldown = cooldown
        self.sleep = sleep

    def check_batch(self, inputs):
        if len(inputs) > self.max_batch_size:
            raise BatchTooLargeError(len(inputs), self.max_batch_size)

    async def ingest(self, inputs, on_progress=None, on_document=None):
        """Ingest a batch of DocumentInput items.

        Args:
            inputs: list of DocumentInput
            on_progress: optional callback(stage, detail, percent), sync or async
            on_document: optional callback(document) after each success

        Returns:
            BatchReport with attempted vs. succeeded counts.

        Raises:
            BatchTooLargeError: before any processing if the batch is too big.
        """
        self.check_batch(inputs)
        total = len(inputs)
        report = BatchReport(attempted=total)

        for idx, item in enumerate(inputs):
            await _notify(on_progress, "ingesting",
                          f"{item.name} ({idx + 1}/{total})", idx / total * 100)

            text = derive_text(item)
            if idx > 0:
                await self.sleep(self.delay)

            try:
                metadata = await asyncio.to_thread(self.service.extract_metadata, text)
                concepts = await asyncio.to_thread(self.service.extract_concepts, text)
            except RateLimitError as e:
                logger.warning("Rate limited on %s, cooling down %.1fs: %s",
                               item.name, self.cooldown, e)
                report.failures.append((item.name, str(e)))
                await self.sleep(self.cooldown)
                continue
            except ExtractionError as e:
                logger.warning("Extraction failed for %s: %s", item.name, e)
                report.failures.append((item.name, str(e)))
                continue
            except Exception as e:
                logger.exception("Unexpected error extracting %s", item.name)
                report.failures.append((item.name, f"{type(e).__name__}: {e}"))
                continue

            document = Document(source_name=item.name, raw_text=text,
                                metadata=metadata)
            self.library.add(document)
            n_nodes, n_links = self.graph.merge(concepts.nodes, concepts.links)
            logger.info("%s -> %d new concepts, %d relations",
                        item.name, n_nodes, n_links)

            report.succeeded += 1
            report.document_ids.append(document.id)
            await _notify(on_document, document)

        await _notify(on_progress, "complete", report.summary, 100)
        logger.info(report.summary)
        return report
