"""Local analysis pipeline: decoded text to content blocks, outline, tables and figures."""

import random
import time
from pathlib import Path
from typing import NamedTuple

from ..logger import logger
from .decoder import DecodeError, EmptyContentError, decode_document, normalize_text
from .figures import extract_figures
from .models import (
    AnalysisResult,
    BlockMetadata,
    ContentBlock,
    NodeMetadata,
    NodePosition,
    Position,
    StructureNode,
    StructureNodeType,
)
from .rules import DEFAULT_LOCALE, RULESETS, RuleSet, get_rules
from .segmenter import count_words, segment_text
from .structure import build_structure, truncate_title
from .tables import extract_tables

SOURCE_FALLBACK = "fallback"
SOURCE_BASIC_SAMPLE = "basic_sample"


class FallbackOutcome(NamedTuple):
    result: AnalysisResult
    source: str
    reason: str | None = None


def analyze_text(
    text: str,
    document_id: str,
    locale: str | None = "auto",
    rng: random.Random | None = None,
    title: str | None = None,
) -> AnalysisResult:
    """Run segmentation, outline, table and figure detection over decoded text.

    Args:
        text: Decoded document text.
        document_id: Namespace for generated ids.
        locale: Rule set to use; "auto" detects it from the text.
        rng: Source of the paragraph confidence jitter.
        title: Title for the root outline node.

    Returns:
        AnalysisResult with all four outputs.

    Raises:
        EmptyContentError: If the text is blank.
    """
    text = normalize_text(text)
    if not text.strip():
        raise EmptyContentError("Document content is empty or unreadable")

    start = time.perf_counter()
    rules = get_rules(locale, text=text)

    segments = segment_text(text, document_id, rules, rng=rng)
    result = AnalysisResult(
        content_blocks=[segment.block for segment in segments],
        structure_nodes=build_structure(segments, document_id, rules, title=title or "Document"),
        tables=extract_tables(text, document_id, rules),
        figures=extract_figures(text, document_id, rules),
    )

    logger.info(
        "text analyzed",
        document_id=document_id,
        locale=rules.locale,
        content_blocks=len(result.content_blocks),
        structure_nodes=len(result.structure_nodes),
        tables=len(result.tables),
        figures=len(result.figures),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return result


def analyze_document(
    data: bytes,
    file_name: str,
    document_id: str,
    locale: str | None = "auto",
    rng: random.Random | None = None,
    title: str | None = None,
) -> AnalysisResult:
    """Decode a file buffer and analyze it.

    Raises:
        DecodeError: If a Word or PDF extractor fails.
        EmptyContentError: If the decoded text is blank.
    """
    decoded = decode_document(data, file_name)
    return analyze_text(
        decoded.text,
        document_id,
        locale=locale,
        rng=rng,
        title=title or Path(file_name).name,
    )


def basic_sample_result(
    document_id: str,
    original_name: str,
    reason: str,
    rules: RuleSet | None = None,
) -> AnalysisResult:
    """Placeholder analysis explaining why the file could not be read."""
    rules = rules or RULESETS[DEFAULT_LOCALE]
    title = rules.sample_title_template.format(name=original_name)
    body = rules.sample_body_template.format(name=original_name, reason=reason)

    blocks = [
        ContentBlock(
            id=f"block_{document_id}_1",
            type="title",
            content=title,
            position=Position(page=1, x=0, y=0, width=100, height=20),
            metadata=BlockMetadata(
                confidence=0.95, word_count=count_words(title), language=rules.language, level=1
            ),
        ),
        ContentBlock(
            id=f"block_{document_id}_2",
            type="paragraph",
            content=body,
            position=Position(page=1, x=0, y=30, width=100, height=40),
            metadata=BlockMetadata(
                confidence=0.90, word_count=count_words(body), language=rules.language
            ),
        ),
    ]
    root = StructureNode(
        id=f"node_{document_id}_0",
        type=StructureNodeType.DOCUMENT,
        title=truncate_title(original_name),
        level=0,
        position=NodePosition(page=1, order=0),
        content_block_ids=[block.id for block in blocks],
        metadata=NodeMetadata(
            word_count=sum(block.metadata.word_count for block in blocks),
            importance=1.0,
            keywords=list(rules.default_keywords),
        ),
    )
    return AnalysisResult(content_blocks=blocks, structure_nodes=[root])


def analyze_with_fallback(
    data: bytes,
    file_name: str,
    document_id: str,
    original_name: str | None = None,
    locale: str | None = "auto",
    rng: random.Random | None = None,
) -> FallbackOutcome:
    """Analyze a buffer, substituting the basic sample when it cannot be read.

    Never raises for decode or empty-content failures.
    """
    original_name = original_name or Path(file_name).name
    try:
        result = analyze_document(
            data, file_name, document_id, locale=locale, rng=rng, title=original_name
        )
        return FallbackOutcome(result=result, source=SOURCE_FALLBACK)
    except (DecodeError, EmptyContentError) as e:
        reason = getattr(e, "reason", None) or str(e)
        logger.warn(
            "local analysis failed, using basic sample",
            document_id=document_id,
            file_name=original_name,
            error=reason,
        )
        rules = RULESETS.get(locale or "")
        return FallbackOutcome(
            result=basic_sample_result(document_id, original_name, reason, rules=rules),
            source=SOURCE_BASIC_SAMPLE,
            reason=reason,
        )
