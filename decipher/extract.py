"""GPT-4o-mini metadata, concept and term extraction."""

import json
import logging

import openai
from pydantic import ValidationError

from .config import (
    AUDIENCES,
    CONCEPT_PROMPT,
    CONCEPT_TEXT_LIMIT,
    EXPLAIN_CONTEXT_LIMIT,
    EXPLAIN_PROMPT,
    METADATA_PROMPT,
    METADATA_TEXT_LIMIT,
    MODEL,
)
from .models import ConceptExtraction, ExplanationLevel, PaperMetadata

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """A service call failed or returned something unusable."""


class RateLimitError(ExtractionError):
    """The service refused the call because of rate limiting."""


class ExplanationError(Exception):
    """A term explanation could not be produced."""


def _is_rate_limited(exc):
    if isinstance(exc, openai.RateLimitError):
        return True
    return isinstance(exc, openai.APIStatusError) and exc.status_code == 429


class ExtractionService:
    """The three external services, backed by one OpenAI client.

    ``extract_metadata`` and ``extract_concepts`` raise ``ExtractionError``
    (or ``RateLimitError``) on any failure; ``explain_term`` raises
    ``ExplanationError``. Callers decide how to degrade.
    """

    def __init__(self, client, model=MODEL):
        self.client = client
        self.model = model

    def _complete_json(self, system_prompt, text):
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                temperature=0.1,
                max_tokens=2000,
            )
        except openai.OpenAIError as e:
            if _is_rate_limited(e):
                raise RateLimitError(str(e)) from e
            raise ExtractionError(str(e)) from e

        try:
            content = response.choices[0].message.content
        except (IndexError, AttributeError) as e:
            raise ExtractionError(f"Unexpected response shape: {e}") from e
        if not content:
            raise ExtractionError("Empty response from model")
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Malformed JSON response: {e}") from e

    def extract_metadata(self, text):
        """Return a validated ``PaperMetadata`` for the document text."""
        data = self._complete_json(METADATA_PROMPT, text[:METADATA_TEXT_LIMIT])
        try:
            return PaperMetadata.model_validate(data)
        except ValidationError as e:
            raise ExtractionError(
                f"Metadata response failed validation ({e.error_count()} errors)"
            ) from e

    def extract_concepts(self, text):
        """Return a validated ``ConceptExtraction`` (nodes and links)."""
        data = self._complete_json(CONCEPT_PROMPT, text[:CONCEPT_TEXT_LIMIT])
        try:
            return ConceptExtraction.model_validate(data)
        except ValidationError as e:
            raise ExtractionError(
                f"Concept response failed validation ({e.error_count()} errors)"
            ) from e

    def explain_term(self, fragment, context, level=ExplanationLevel.STANDARD):
        """Short plain-language explanation of ``fragment`` for ``level``."""
        level = ExplanationLevel(level)
        prompt = EXPLAIN_PROMPT.format(
            fragment=fragment,
            context=context[:EXPLAIN_CONTEXT_LIMIT],
            audience=AUDIENCES[level.value],
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.3,
                max_tokens=300,
            )
        except openai.OpenAIError as e:
            logger.warning("Explanation failed for %r: %s", fragment[:40], e)
            raise ExplanationError(str(e)) from e

        try:
            content = (response.choices[0].message.content or "").strip()
        except (IndexError, AttributeError) as e:
            raise ExplanationError(f"Unexpected response shape: {e}") from e
        if not content:
            raise ExplanationError("Empty explanation")
        return content
