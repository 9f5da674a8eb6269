"""Paragraph aggregation: turn decoded text into an ordered stream of content blocks.

Consecutive prose lines are merged into one paragraph. A blank line or a
special line (heading, section title, list item, contact line) ends the
paragraph being built; special lines always become blocks of their own.
"""

import math
import random
import re
from dataclasses import dataclass

from .classifier import PROSE, LineClassification, classify_line
from .keywords import extract_keywords
from .models import BlockMetadata, ContentBlock, Position
from .rules import RuleSet

# Documents with at most this many lines may be kept as a single paragraph
SHORT_DOCUMENT_MAX_LINES = 3

SPECIAL_LINE_CONFIDENCE = 0.95
SHORT_DOCUMENT_CONFIDENCE = 0.95
PROSE_CONFIDENCE_RANGE = (0.90, 0.99)

# Pseudo-layout: vertical advance per block
SPECIAL_LINE_ADVANCE = 30
PROSE_MIN_ADVANCE = 25
CHARS_PER_LAYOUT_LINE = 50

_WORD = re.compile(r"[\u4e00-\u9fa5]|[A-Za-z0-9]+(?:['\-.][A-Za-z0-9]+)*")


def count_words(text: str) -> int:
    """Count words, treating every CJK ideograph as one word."""
    return len(_WORD.findall(text))


@dataclass
class Segment:
    """One emitted block together with how its source line was classified."""

    block: ContentBlock
    classification: LineClassification
    order: int

    @property
    def is_special(self) -> bool:
        return self.classification.is_special


class _ParagraphAggregator:
    """Two-state machine (idle / accumulating) over the lines of a document."""

    def __init__(self, document_id: str, rules: RuleSet, rng: random.Random):
        self.document_id = document_id
        self.rules = rules
        self.rng = rng
        self.segments: list[Segment] = []
        self.buffer: list[str] = []
        self.current_y = 0

    @property
    def accumulating(self) -> bool:
        return bool(self.buffer)

    def _next_block_id(self) -> str:
        return f"block_{self.document_id}_{len(self.segments) + 1}"

    def _emit(self, block: ContentBlock, classification: LineClassification) -> None:
        self.segments.append(Segment(block=block, classification=classification, order=len(self.segments) + 1))

    def flush(self) -> None:
        if not self.accumulating:
            return

        paragraph = " ".join(self.buffer).strip()
        self.buffer = []
        if not paragraph:
            return

        layout_lines = math.ceil(len(paragraph) / CHARS_PER_LAYOUT_LINE)
        block = ContentBlock(
            id=self._next_block_id(),
            type=PROSE.block_type,
            content=paragraph,
            position=Position(
                page=1, x=0, y=self.current_y, width=100, height=max(20, layout_lines * 20)
            ),
            metadata=BlockMetadata(
                confidence=self.rng.uniform(*PROSE_CONFIDENCE_RANGE),
                word_count=count_words(paragraph),
                language=self.rules.language,
                semantic_tags=extract_keywords(paragraph, self.rules),
                level=0,
            ),
        )
        self._emit(block, PROSE)
        self.current_y += max(PROSE_MIN_ADVANCE, layout_lines * PROSE_MIN_ADVANCE)

    def emit_special(self, line: str, classification: LineClassification) -> None:
        level = classification.level
        block = ContentBlock(
            id=self._next_block_id(),
            type=classification.block_type,
            content=line,
            position=Position(
                page=1, x=level * 20, y=self.current_y, width=100 - level * 20, height=25
            ),
            metadata=BlockMetadata(
                confidence=SPECIAL_LINE_CONFIDENCE,
                word_count=count_words(line),
                language=self.rules.language,
                semantic_tags=extract_keywords(line, self.rules),
                level=level,
            ),
        )
        self._emit(block, classification)
        self.current_y += SPECIAL_LINE_ADVANCE

    def feed(self, raw_line: str) -> None:
        line = raw_line.strip()
        if not line:
            self.flush()
            return

        classification = classify_line(line, self.rules)
        if classification.is_special:
            self.flush()
            self.emit_special(line, classification)
        else:
            self.buffer.append(line)


def _is_short_document(lines: list[str], rules: RuleSet) -> bool:
    """A short document with no blank separator and no special line stays whole."""
    if len(lines) > SHORT_DOCUMENT_MAX_LINES:
        return False

    non_blank = [i for i, line in enumerate(lines) if line.strip()]
    if not non_blank:
        return False

    separated = any(not lines[i].strip() for i in range(non_blank[0], non_blank[-1]))
    if separated:
        return False

    return not any(classify_line(lines[i].strip(), rules).is_special for i in non_blank)


def segment_text(
    text: str,
    document_id: str,
    rules: RuleSet,
    rng: random.Random | None = None,
) -> list[Segment]:
    """Split decoded text into ordered, classified content blocks.

    Args:
        text: Normalized document text (newlines already unified).
        document_id: Used to namespace block ids.
        rules: Lexical cues for the document's locale.
        rng: Source of the confidence jitter on prose blocks.

    Returns:
        Segments in document order; empty if the text is blank.
    """
    rng = rng or random.Random()
    lines = text.split("\n")

    if _is_short_document(lines, rules):
        content = text.strip()
        block = ContentBlock(
            id=f"block_{document_id}_1",
            type=PROSE.block_type,
            content=content,
            position=Position(
                page=1,
                x=0,
                y=0,
                width=100,
                height=max(40, math.ceil(len(content) / CHARS_PER_LAYOUT_LINE) * 20),
            ),
            metadata=BlockMetadata(
                confidence=SHORT_DOCUMENT_CONFIDENCE,
                word_count=count_words(content),
                language=rules.language,
                semantic_tags=extract_keywords(content, rules),
                level=0,
            ),
        )
        return [Segment(block=block, classification=PROSE, order=1)]

    aggregator = _ParagraphAggregator(document_id, rules, rng)
    for line in lines:
        aggregator.feed(line)
    aggregator.flush()
    return aggregator.segments
