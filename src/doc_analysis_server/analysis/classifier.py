"""Line-level classification of decoded text."""

from typing import NamedTuple

from .models import StructureNodeType
from .rules import RuleSet


class LineClassification(NamedTuple):
    block_type: str
    node_type: StructureNodeType
    level: int
    is_special: bool


PROSE = LineClassification("paragraph", StructureNodeType.PARAGRAPH, 0, False)
CHAPTER = LineClassification("title", StructureNodeType.CHAPTER, 1, True)
SECTION = LineClassification("subtitle", StructureNodeType.SECTION, 2, True)
LIST_ITEM = LineClassification("list_item", StructureNodeType.LIST, 3, True)
CONTACT = LineClassification("contact", StructureNodeType.CONTACT, 2, True)


def classify_line(line: str, rules: RuleSet) -> LineClassification:
    """Classify one trimmed, non-empty line.

    Rules are checked in priority order: chapter heading, colon-terminated
    section title, numbered list item, contact details, then prose.

    Args:
        line: The line to classify.
        rules: Lexical cues for the document's locale.

    Returns:
        LineClassification; ``is_special`` is False only for prose.
    """
    if rules.chapter_pattern.search(line):
        return CHAPTER
    if line.endswith(rules.colon_suffixes):
        return SECTION
    if rules.list_item_pattern.match(line):
        return LIST_ITEM

    lowered = line.lower()
    if any(cue in lowered for cue in rules.contact_cues):
        return CONTACT

    return PROSE
