"""Process model, document and retrieval types shared across the pipeline."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TERMINAL_NODE_TYPES = {"start", "end"}


class Control(BaseModel):
    """A control attached to a process node."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = ""
    description: str = ""
    implementation: str = ""
    owner: str = ""
    status: str = ""


class NodeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    label: str = ""
    description: str = ""
    owner: str = ""
    controls: list[Control] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class ProcessNode(BaseModel):
    """A step, decision, start or end node of a process graph."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = "step"
    data: NodeData = Field(default_factory=NodeData)

    @property
    def display_name(self) -> str:
        return self.data.label or "process step"

    @property
    def is_terminal(self) -> bool:
        return self.type.lower() in TERMINAL_NODE_TYPES


class ProcessEdge(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = ""
    source: str
    target: str
    label: str = ""


class ProcessModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    nodes: list[ProcessNode] = Field(default_factory=list)
    edges: list[ProcessEdge] = Field(default_factory=list)

    def analyzable_nodes(self) -> list[ProcessNode]:
        """Nodes in model order, without start/end pseudo-nodes."""
        return [n for n in self.nodes if not n.is_terminal]


class Document(BaseModel):
    """A reference document reassembled from its chunks for one run."""

    id: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def title(self) -> str | None:
        return self.metadata.get("title")


class DocumentChunk(BaseModel):
    """One stored chunk of a document, as returned by a document provider."""

    text: str
    title: str | None = None
    category: str | None = None
    chunk_index: int = 0


class ContextChunk(BaseModel):
    """A piece of document text retrieved for one process entity."""

    text: str
    document_id: str
    title: str | None = None


class Requirement(BaseModel):
    """An obligation-like sentence pulled out of retrieved context."""

    text: str
    document_id: str
    title: str | None = None
    score: float
