"""
PPMatch - Content Unifier
=========================

Builds the versioned UnifiedContentProfile for one record from the unified
text supplied by the document collaborator and the record's documents.

When no unified text is supplied, documents are concatenated in descending
weight_factor order, each under a header line:

    === NARRATIVE: narrative.docx ===
"""

import hashlib
import logging
import re
from typing import List, Optional, Sequence

from ppmatch.shared.enums import DocumentClass
from ppmatch.shared.exceptions import EmptyContentError
from ppmatch.shared.models import PPDocument, UnifiedContentProfile

logger = logging.getLogger(__name__)

SUMMARY_SENTENCES = 3
MIN_SUMMARY_SENTENCE_CHARS = 20
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def order_documents(documents: Sequence[PPDocument]) -> List[PPDocument]:
    """Highest weight first; ties by class then id for a stable order."""
    return sorted(
        documents,
        key=lambda d: (-d.weight_factor, d.document_class.value, d.document_id),
    )


def assemble_unified_text(documents: Sequence[PPDocument]) -> str:
    parts = []
    for doc in order_documents(documents):
        if not doc.text.strip():
            continue
        header = f"=== {doc.document_class.value.upper()}: {doc.filename or doc.document_id} ==="
        parts.append(f"{header}\n{doc.text.strip()}")
    return "\n\n".join(parts)


def extractive_summary(text: str, sentences: int = SUMMARY_SENTENCES) -> str:
    """First few sentences longer than 20 characters."""
    picked = [
        s.strip() for s in _SENTENCE_SPLIT.split(text)
        if len(s.strip()) > MIN_SUMMARY_SENTENCE_CHARS
    ][:sentences]
    if not picked:
        return ""
    return re.sub(r"\s+", " ", ". ".join(picked)) + "."


def content_hash(unified_text: str, documents: Sequence[PPDocument]) -> str:
    digest = hashlib.sha256(unified_text.encode("utf-8"))
    for doc in order_documents(documents):
        digest.update(f"|{doc.document_id}:{doc.document_class.value}:{doc.weight_factor}".encode("utf-8"))
    return digest.hexdigest()


class ContentUnifier:
    """Produces UnifiedContentProfile values; never edits an existing one."""

    def __init__(self, summary_sentences: int = SUMMARY_SENTENCES):
        self.summary_sentences = summary_sentences

    def unify(
        self,
        record_id: str,
        unified_text: Optional[str],
        documents: Sequence[PPDocument] = (),
        version: int = 1,
    ) -> UnifiedContentProfile:
        """
        Build a profile.

        Raises:
            EmptyContentError: neither unified text nor document text present
        """
        text = (unified_text or "").strip()
        if not text:
            text = assemble_unified_text(documents)
        if not text:
            raise EmptyContentError(f"Record {record_id} has no unified text")

        ordered = order_documents(documents)
        narrative_text = "\n\n".join(
            d.text.strip() for d in ordered
            if d.document_class == DocumentClass.NARRATIVE and d.text.strip()
        )

        return UnifiedContentProfile(
            record_id=record_id,
            version=version,
            unified_text=text,
            narrative_text=narrative_text,
            summary=extractive_summary(narrative_text or text, self.summary_sentences),
            word_count=len(text.split()),
            content_hash=content_hash(text, ordered),
            document_ids=tuple(d.document_id for d in ordered),
            documents=tuple(ordered),
        )
