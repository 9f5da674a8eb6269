"""Synthesize figure placeholders from textual references to figures.

Text documents carry no images, so every figure found here is a reference:
it has a description built from the surrounding lines and no image URL.
"""

from .models import FigureContent, FigureData, FigureMetadata, FigureType, Position
from .rules import RuleSet

FIGURE_CONFIDENCE = 0.8
CONTEXT_RADIUS = 2
MAX_CONTEXT_LINE_LENGTH = 200
EXTRACTED_TEXT_PREVIEW = 50


def detect_figure_type(line: str, rules: RuleSet) -> FigureType:
    lowered = line.lower()
    for figure_type, cues in rules.figure_type_cues:
        if any(cue in lowered for cue in cues):
            return FigureType(figure_type)
    return FigureType.IMAGE


def _describe(lines: list[str], index: int, rules: RuleSet) -> str:
    parts = [lines[index].strip()]
    start = max(0, index - CONTEXT_RADIUS)
    end = min(len(lines) - 1, index + CONTEXT_RADIUS)
    for j in range(start, end + 1):
        if j == index:
            continue
        context = lines[j].strip()
        if context and len(context) < MAX_CONTEXT_LINE_LENGTH and not rules.is_figure_line(context):
            parts.append(context)
    return " ".join(parts)


def _extracted_text(description: str, rules: RuleSet) -> str:
    lowered = description.lower()
    terms = [term for term, cues in rules.figure_context_cues if any(cue in lowered for cue in cues)]
    return ", ".join(terms) or description[:EXTRACTED_TEXT_PREVIEW]


def _objects(description: str, rules: RuleSet) -> list[str]:
    lowered = description.lower()
    return [term for term in rules.figure_object_cues if term in lowered]


def extract_figures(text: str, document_id: str, rules: RuleSet) -> list[FigureData]:
    """Return one reference figure per line that mentions a figure."""
    lines = text.split("\n")
    figures = []

    for i, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line or not rules.is_figure_line(line):
            continue

        index = len(figures) + 1
        figure_type = detect_figure_type(line, rules)
        description = _describe(lines, i, rules)

        figures.append(
            FigureData(
                id=f"figure_{document_id}_{index}",
                type=figure_type,
                position=Position(page=1, x=0, y=index * 120, width=100, height=80),
                content=FigureContent(
                    image_url=None,
                    description=description,
                    caption=line,
                    alt_text=f"{figure_type.value} {index}",
                ),
                metadata=FigureMetadata(
                    confidence=FIGURE_CONFIDENCE,
                    extracted_text=_extracted_text(description, rules),
                    objects=_objects(description, rules),
                    file_type="reference",
                    is_reference=True,
                ),
            )
        )

    return figures
