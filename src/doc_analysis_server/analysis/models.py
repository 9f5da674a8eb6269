"""Data models shared by the analysis pipeline, the repository and the API.

Attributes are snake_case; JSON uses camelCase aliases (``contentBlocks``,
``parentId``) and both spellings are accepted on input.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    PARSING = "parsing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    PROGRESSING = "PROGRESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class StructureNodeType(str, Enum):
    DOCUMENT = "document"
    CHAPTER = "chapter"
    SECTION = "section"
    SUBSECTION = "subsection"
    PARAGRAPH = "paragraph"
    LIST = "list"
    CONTACT = "contact"


class FigureType(str, Enum):
    IMAGE = "image"
    CHART = "chart"
    DIAGRAM = "diagram"
    GRAPH = "graph"
    ILLUSTRATION = "illustration"
    PHOTO = "photo"
    FLOWCHART = "flowchart"
    ARCHITECTURE = "architecture"
    SCREENSHOT = "screenshot"


class Position(CamelModel):
    """Location of a block on a page. Fallback output always uses page 1."""

    page: int = 1
    x: float = 0
    y: float = 0
    width: float = 100
    height: float = 40


class BlockMetadata(CamelModel):
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    word_count: int = 0
    language: str | None = None
    semantic_tags: list[str] = Field(default_factory=list)
    level: int = 0


class ContentBlock(CamelModel):
    """A contiguous unit of document text."""

    id: str
    type: str  # "title", "subtitle", "paragraph", "list_item", "contact", ...
    content: str
    position: Position = Field(default_factory=Position)
    metadata: BlockMetadata = Field(default_factory=BlockMetadata)


class NodePosition(CamelModel):
    page: int = 1
    order: int = 0


class NodeMetadata(CamelModel):
    word_count: int = 0
    importance: float = 1.0
    keywords: list[str] = Field(default_factory=list)


class StructureNode(CamelModel):
    """A node in the document outline. Only the root has no parent."""

    id: str
    type: StructureNodeType
    title: str
    level: int
    position: NodePosition = Field(default_factory=NodePosition)
    parent_id: str | None = None
    child_ids: list[str] = Field(default_factory=list)
    content_block_ids: list[str] = Field(default_factory=list)
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)


class TableCell(CamelModel):
    value: str
    type: str = "text"  # text, number, date, boolean, empty
    colspan: int = 1
    rowspan: int = 1
    is_header: bool = False


class TableStructure(CamelModel):
    rows: int = 0
    columns: int = 0
    has_header: bool = False
    has_footer: bool = False


class TableMetadata(CamelModel):
    title: str | None = None
    caption: str | None = None
    confidence: float = 0.8
    data_types: list[str] = Field(default_factory=list)


class TableData(CamelModel):
    """A table recovered from text. Rows may be ragged."""

    id: str
    position: Position = Field(default_factory=Position)
    structure: TableStructure = Field(default_factory=TableStructure)
    data: list[list[TableCell]] = Field(default_factory=list)
    metadata: TableMetadata = Field(default_factory=TableMetadata)


class FigureContent(CamelModel):
    image_url: str | None = None
    description: str
    caption: str | None = None
    alt_text: str | None = None


class FigureMetadata(CamelModel):
    confidence: float = 0.8
    extracted_text: str | None = None
    colors: list[str] = Field(default_factory=list)
    objects: list[str] = Field(default_factory=list)
    file_type: str | None = None
    is_reference: bool = False


class FigureData(CamelModel):
    """A figure, or a placeholder synthesized from a textual mention of one."""

    id: str
    type: FigureType = FigureType.IMAGE
    position: Position = Field(default_factory=Position)
    content: FigureContent
    metadata: FigureMetadata = Field(default_factory=FigureMetadata)


class AnalysisResult(CamelModel):
    content_blocks: list[ContentBlock] = Field(default_factory=list)
    structure_nodes: list[StructureNode] = Field(default_factory=list)
    tables: list[TableData] = Field(default_factory=list)
    figures: list[FigureData] = Field(default_factory=list)


class DecodedText(BaseModel):
    """Decoder output along with how it was produced."""

    text: str
    encoding: str
    source_format: str  # "docx", "doc", "pdf" or "text"
    page_count: int | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(CamelModel):
    """An uploaded document and, once parsed, its analysis."""

    id: str
    file_name: str
    original_name: str
    file_size: int = 0
    mime_type: str | None = None
    uploaded_at: datetime = Field(default_factory=_utcnow)
    status: DocumentStatus = DocumentStatus.UPLOADED
    task_id: str | None = None
    error_message: str | None = None
    parse_source: str | None = None  # "external", "fallback" or "basic_sample"
    content_blocks: list[ContentBlock] = Field(default_factory=list)
    structure_nodes: list[StructureNode] = Field(default_factory=list)
    tables: list[TableData] = Field(default_factory=list)
    figures: list[FigureData] = Field(default_factory=list)

    def apply_result(self, result: AnalysisResult, source: str) -> None:
        self.content_blocks = result.content_blocks
        self.structure_nodes = result.structure_nodes
        self.tables = result.tables
        self.figures = result.figures
        self.parse_source = source
        self.status = DocumentStatus.COMPLETED
        self.error_message = None


class ParseTask(CamelModel):
    task_id: str
    document_id: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    result: dict[str, Any] | None = None
    error: str | None = None

    def mark(self, status: TaskStatus, **changes: Any) -> None:
        self.status = status
        self.updated_at = _utcnow()
        for key, value in changes.items():
            setattr(self, key, value)
