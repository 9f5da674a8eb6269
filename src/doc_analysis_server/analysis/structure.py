"""Build the hierarchical outline from the classified segment stream."""

from collections.abc import Iterable

from .classifier import CHAPTER, PROSE, SECTION
from .keywords import extract_keywords
from .models import (
    ContentBlock,
    NodeMetadata,
    NodePosition,
    StructureNode,
    StructureNodeType,
)
from .rules import RuleSet
from .segmenter import Segment

MAX_TITLE_LENGTH = 100


def truncate_title(text: str, limit: int = MAX_TITLE_LENGTH) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def heading_importance(level: int) -> float:
    """Importance decays by 0.2 per level below the chapter level, floored at 0.1."""
    return max(0.1, 1.0 - (level - 1) * 0.2)


def _closest_preceding_node(
    nodes: list[StructureNode], page: int, order: int
) -> StructureNode | None:
    candidate = None
    for node in nodes:
        if node.type == StructureNodeType.DOCUMENT:
            continue
        if node.position.page <= page and node.position.order < order:
            candidate = node
    return candidate


def build_structure(
    segments: list[Segment],
    document_id: str,
    rules: RuleSet,
    title: str = "Document",
) -> list[StructureNode]:
    """Turn segments into a tree rooted at a synthetic document node.

    Special segments become chapter/section/list/contact nodes nested by
    level. Prose segments do not get nodes of their own; their blocks are
    attached to the closest preceding node on the same or an earlier page,
    or to the root when none precedes them.

    Args:
        segments: Output of segment_text(), in document order.
        document_id: Used to namespace node ids.
        rules: Lexical cues used for node keywords.
        title: Title of the root node.

    Returns:
        Nodes in document order, root first.
    """
    root = StructureNode(
        id=f"node_{document_id}_0",
        type=StructureNodeType.DOCUMENT,
        title=truncate_title(title),
        level=0,
        position=NodePosition(page=1, order=0),
        metadata=NodeMetadata(
            word_count=sum(s.block.metadata.word_count for s in segments),
            importance=1.0,
            keywords=[],
        ),
    )
    nodes = [root]
    stack = [root]

    for segment in segments:
        if not segment.is_special:
            continue

        classification = segment.classification
        while stack[-1].level >= classification.level:
            stack.pop()
        parent = stack[-1]

        block = segment.block
        node = StructureNode(
            id=f"node_{document_id}_{len(nodes)}",
            type=classification.node_type,
            title=truncate_title(block.content),
            level=classification.level,
            position=NodePosition(page=block.position.page, order=segment.order),
            parent_id=parent.id,
            content_block_ids=[block.id],
            metadata=NodeMetadata(
                word_count=block.metadata.word_count,
                importance=heading_importance(classification.level),
                keywords=extract_keywords(block.content, rules),
            ),
        )
        parent.child_ids.append(node.id)
        nodes.append(node)
        stack.append(node)

    for segment in segments:
        if segment.is_special:
            continue
        block = segment.block
        owner = _closest_preceding_node(nodes, block.position.page, segment.order) or root
        owner.content_block_ids.append(block.id)
        if owner is not root:
            owner.metadata.word_count += block.metadata.word_count

    if segments:
        root.metadata.keywords = extract_keywords(" ".join(s.block.content for s in segments), rules)

    return nodes


def attach_blocks(
    blocks: Iterable[ContentBlock],
    document_id: str,
    rules: RuleSet,
    title: str = "Document",
) -> list[StructureNode]:
    """Build an outline for blocks that already carry their own types.

    Used for externally parsed documents: title/heading blocks open nodes,
    every other block attaches to the closest preceding node.
    """
    segments = []
    for order, block in enumerate(blocks, start=1):
        if block.type == "title":
            classification = CHAPTER
        elif block.type in ("heading", "subtitle"):
            classification = SECTION
        else:
            classification = PROSE
        segments.append(Segment(block=block, classification=classification, order=order))
    return build_structure(segments, document_id, rules, title=title)
