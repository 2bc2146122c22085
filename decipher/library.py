"""In-memory document library, most recent first."""

from .models import Document, Note, ReadStatus


class Library:
    """Ordered collection of documents keyed by id.

    Only the ingestor adds documents; reader-side edits (status, rating,
    notes) go through the methods below.
    """

    def __init__(self):
        self._docs = {}
        self._order = []

    def __len__(self):
        return len(self._order)

    def __iter__(self):
        return (self._docs[doc_id] for doc_id in self._order)

    def __contains__(self, doc_id):
        return doc_id in self._docs

    def add(self, document: Document):
        """Prepend a document. Ids must be unique."""
        if document.id in self._docs:
            raise ValueError(f"Duplicate document id: {document.id}")
        self._docs[document.id] = document
        self._order.insert(0, document.id)
        return document

    def get(self, doc_id):
        """Return the document, or raise KeyError."""
        return self._docs[doc_id]

    def ids(self):
        return list(self._order)

    def set_read_status(self, doc_id, status):
        doc = self.get(doc_id)
        doc.read_status = ReadStatus(status)
        return doc

    def set_rating(self, doc_id, rating):
        doc = self.get(doc_id)
        doc.rating = rating
        return doc

    def add_note(self, doc_id, text, anchor=None):
        doc = self.get(doc_id)
        note = Note(text=text, anchor=anchor)
        doc.notes.append(note)
        return note

    def find_by_concept(self, concept_id):
        """First document whose keywords or text mention the concept."""
        for doc in self:
            if concept_id in doc.metadata.keywords or concept_id in doc.raw_text:
                return doc
        return None
