from .decoder import (
    AnalysisError,
    DecodeError,
    EmptyContentError,
    UnsupportedEncodingError,
    decode_document,
)
from .external_parser import EasyDocClient, ParseResponse, adapt_task_result
from .ingestion import (
    DocumentNotFoundError,
    DocumentParsingService,
    FileTooLargeError,
    ParseOutcome,
    PathValidationError,
    TaskNotFoundError,
    UnsupportedFileTypeError,
    validate_file_path,
)
from .models import (
    AnalysisResult,
    ContentBlock,
    Document,
    DocumentStatus,
    FigureData,
    ParseTask,
    StructureNode,
    TableData,
    TaskStatus,
)
from .pipeline import analyze_document, analyze_text, analyze_with_fallback, basic_sample_result
from .repository import InMemoryRepository, PgRepository, Repository
from .rules import RULESETS, RuleSet, get_rules

__all__ = [
    "AnalysisError",
    "DecodeError",
    "EmptyContentError",
    "UnsupportedEncodingError",
    "decode_document",
    "EasyDocClient",
    "ParseResponse",
    "adapt_task_result",
    "DocumentNotFoundError",
    "DocumentParsingService",
    "FileTooLargeError",
    "ParseOutcome",
    "PathValidationError",
    "TaskNotFoundError",
    "UnsupportedFileTypeError",
    "validate_file_path",
    "AnalysisResult",
    "ContentBlock",
    "Document",
    "DocumentStatus",
    "FigureData",
    "ParseTask",
    "StructureNode",
    "TableData",
    "TaskStatus",
    "analyze_document",
    "analyze_text",
    "analyze_with_fallback",
    "basic_sample_result",
    "InMemoryRepository",
    "PgRepository",
    "Repository",
    "RULESETS",
    "RuleSet",
    "get_rules",
]
