"""Context collaborators: process models, document chunks, and the chunk index.

The pipeline only depends on the protocols below. ``FileContextProvider``
serves process models and documents from a local directory (used by the CLI);
``VectorStoreIndex`` adapts any LangChain ``VectorStore`` to ``ChunkIndex``.

Directory layout read by ``FileContextProvider``::

    <root>/process_models/<id>.json|.yaml
    <root>/documents/<id>.json|.yaml   # list of {text, title, category, chunk_index}
    <root>/documents/<id>.txt|.md      # whole document as a single chunk
"""

import logging
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import ValidationError

from rac.errors import ContextLoadError
from rac.models.process import ContextChunk, DocumentChunk, ProcessModel

logger = logging.getLogger(__name__)


class ProcessModelProvider(Protocol):
    def load_process_model(self, process_model_id: str) -> ProcessModel: ...


class DocumentProvider(Protocol):
    def load_document_chunks(self, document_id: str) -> list[DocumentChunk]: ...


class ChunkIndex(Protocol):
    def similarity_search(
        self, namespace: str, query: str, top_k: int, filter: dict | None = None
    ) -> list[ContextChunk]: ...


def _find_file(directory: Path, stem: str, suffixes: tuple[str, ...]) -> Path | None:
    for suffix in suffixes:
        candidate = directory / f"{stem}{suffix}"
        if candidate.is_file():
            return candidate
    return None


class FileContextProvider:
    """Process models and documents stored as files under one root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def load_process_model(self, process_model_id: str) -> ProcessModel:
        path = _find_file(self.root / "process_models", process_model_id, (".json", ".yaml", ".yml"))
        if path is None:
            raise ContextLoadError(f"Process model {process_model_id} not found under {self.root}")

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            data.setdefault("id", process_model_id)
            return ProcessModel.model_validate(data)
        except (yaml.YAMLError, ValidationError, AttributeError) as exc:
            raise ContextLoadError(f"Process model {process_model_id} is malformed: {exc}") from exc

    def load_document_chunks(self, document_id: str) -> list[DocumentChunk]:
        directory = self.root / "documents"

        text_path = _find_file(directory, document_id, (".txt", ".md"))
        if text_path is not None:
            text = text_path.read_text(encoding="utf-8")
            return [DocumentChunk(text=text, title=text_path.stem, chunk_index=0)] if text.strip() else []

        path = _find_file(directory, document_id, (".json", ".yaml", ".yml"))
        if path is None:
            return []

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
            if isinstance(data, dict):
                defaults = {k: data[k] for k in ("title", "category") if k in data}
                data = [{**defaults, **chunk} for chunk in data.get("chunks", [])]
            chunks = [DocumentChunk.model_validate(chunk) for chunk in data]
        except (yaml.YAMLError, ValidationError, TypeError) as exc:
            raise ContextLoadError(f"Document {document_id} is malformed: {exc}") from exc

        return sorted(chunks, key=lambda c: c.chunk_index)


def _metadata_matcher(filter: dict):
    def _matches(doc) -> bool:
        return all(doc.metadata.get(k) == v for k, v in filter.items())
    return _matches


class VectorStoreIndex:
    """``ChunkIndex`` over a LangChain ``VectorStore``.

    Chunks are expected to carry ``documentId`` and ``title`` metadata.
    ``namespaced`` forwards the namespace (Pinecone-style stores);
    ``callable_filter`` turns the metadata filter into a predicate for stores
    that filter with a callable (``InMemoryVectorStore``).
    """

    def __init__(self, store, *, namespaced: bool = False, callable_filter: bool = False):
        self.store = store
        self.namespaced = namespaced
        self.callable_filter = callable_filter

    def similarity_search(
        self, namespace: str, query: str, top_k: int, filter: dict | None = None
    ) -> list[ContextChunk]:
        kwargs = {}
        if self.namespaced:
            kwargs["namespace"] = namespace
        if filter:
            kwargs["filter"] = _metadata_matcher(filter) if self.callable_filter else dict(filter)

        documents = self.store.similarity_search(query, k=top_k, **kwargs)
        return [
            ContextChunk(
                text=doc.page_content or str(doc.metadata.get("text", "")),
                document_id=str(doc.metadata.get("documentId", "unknown")),
                title=doc.metadata.get("title"),
            )
            for doc in documents
        ]
