"""Retrieval helper — picks the document text placed into each stage prompt."""

import logging
import re

from rac.models.process import ContextChunk, Control, Document, ProcessNode, Requirement

logger = logging.getLogger(__name__)

REQUIREMENT_KEYWORDS = (
    "must", "shall", "should", "required", "necessary", "mandated",
    "ensure", "comply", "maintain", "implement", "establish",
)

# Ranking heuristic, not a probability: base score plus a fixed bump per
# entity attribute found in the sentence.
BASE_SCORE = 0.2
MATCH_WEIGHT = 0.2

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def _query_text(entity: ProcessNode | Control) -> str:
    if isinstance(entity, Control):
        parts = [entity.description, entity.type]
    else:
        parts = [entity.data.label, entity.data.description, *entity.data.keywords]
    return " ".join(p for p in parts if p)


def _entity_terms(entity: ProcessNode | Control) -> list[str]:
    if isinstance(entity, Control):
        terms = [entity.description, entity.type, entity.owner]
    else:
        terms = [entity.data.label, entity.data.description, entity.type, entity.data.owner]
    return [t.lower() for t in terms if t]


class RetrievalHelper:
    """Finds context for an entity in a chunk index, falling back to whole documents."""

    def __init__(
        self,
        index=None,
        *,
        namespace: str = "kb",
        top_k: int = 5,
        content_type: str | None = "policy",
        max_requirements: int = 5,
    ):
        self.index = index
        self.namespace = namespace
        self.top_k = top_k
        self.content_type = content_type
        self.max_requirements = max_requirements

    def get_relevant_context(
        self, entity: ProcessNode | Control, documents: list[Document]
    ) -> list[ContextChunk]:
        """Return the chunks most relevant to ``entity``.

        Falls back to every supplied document, whole, when there is no index,
        the search fails, or it finds nothing.
        """
        if self.index is not None:
            query = _query_text(entity)
            search_filter = {"contentType": self.content_type} if self.content_type else None
            try:
                chunks = self.index.similarity_search(self.namespace, query, self.top_k, search_filter)
            except Exception as exc:
                logger.warning("Similarity search failed for '%s' (%s); using all documents", query, exc)
            else:
                if chunks:
                    return list(chunks)
                logger.info("Similarity search returned nothing for '%s'; using all documents", query)

        return [
            ContextChunk(text=doc.text, document_id=doc.id, title=doc.title)
            for doc in documents
        ]

    def extract_requirements(
        self, entity: ProcessNode | Control, chunks: list[ContextChunk]
    ) -> list[Requirement]:
        """Pull obligation sentences out of ``chunks``, best matches for ``entity`` first."""
        terms = _entity_terms(entity)
        candidates = []

        for chunk in chunks:
            for sentence in _SENTENCE_SPLIT_RE.split(chunk.text):
                lowered = sentence.lower()
                if not any(keyword in lowered for keyword in REQUIREMENT_KEYWORDS):
                    continue
                matches = sum(1 for term in terms if term in lowered)
                candidates.append(
                    Requirement(
                        text=sentence.strip(),
                        document_id=chunk.document_id,
                        title=chunk.title,
                        score=round(BASE_SCORE + MATCH_WEIGHT * matches, 4),
                    )
                )

        # sorted() is stable, so equal scores keep their original order
        ranked = sorted(candidates, key=lambda r: r.score, reverse=True)
        return ranked[:self.max_requirements]
