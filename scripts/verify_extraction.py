#!/usr/bin/env python3
"""Verification script for local analysis quality.

Usage:
    python scripts/verify_extraction.py <file_path> [--blocks N] [--locale auto|zh-CN|en]

Outputs the analysis of a file for manual verification.
"""

import argparse
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from doc_analysis_server.analysis.decoder import AnalysisError, decode_document
from doc_analysis_server.analysis.pipeline import analyze_with_fallback

BLOCK_MARKERS = {
    "title": "[T]",
    "subtitle": "[S]",
    "paragraph": "[P]",
    "list_item": "[L]",
    "contact": "[C]",
}


def main():
    parser = argparse.ArgumentParser(description="Verify document analysis quality")
    parser.add_argument("file_path", help="Path to a PDF, Word or text file")
    parser.add_argument(
        "--blocks", type=int, default=20, help="Number of content blocks to display (default: 20)"
    )
    parser.add_argument("--locale", default="auto", help="Rule set to use (default: auto)")
    args = parser.parse_args()

    file_path = Path(args.file_path)
    if not file_path.exists():
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    print(f"Analyzing: {file_path}")
    print("=" * 80)

    data = file_path.read_bytes()
    try:
        decoded = decode_document(data, file_path.name)
        print(f"Encoding: {decoded.encoding}, format: {decoded.source_format}, pages: {decoded.page_count or '-'}")
    except AnalysisError as e:
        print(f"Decode failed: {e}")

    outcome = analyze_with_fallback(data, file_path.name, "verify", locale=args.locale)
    result = outcome.result

    print(f"Source: {outcome.source}")
    print(
        f"Blocks: {len(result.content_blocks)}, nodes: {len(result.structure_nodes)}, "
        f"tables: {len(result.tables)}, figures: {len(result.figures)}"
    )
    print("=" * 80)

    for block in result.content_blocks[: args.blocks]:
        marker = BLOCK_MARKERS.get(block.type, "[?]")
        text = block.content[:200] + "..." if len(block.content) > 200 else block.content
        print(f"  {marker} (y={block.position.y:.0f}, words={block.metadata.word_count}) {text}")

    print("\nOutline:")
    for node in result.structure_nodes:
        print(f"  {'  ' * node.level}{node.type.value}: {node.title} ({len(node.content_block_ids)} blocks)")

    if result.tables:
        print("\nTables:")
        for table in result.tables:
            print(
                f"  {table.metadata.title}: {table.structure.columns} cols, {table.structure.rows} rows, "
                f"types={table.metadata.data_types}"
            )

    if result.figures:
        print("\nFigures:")
        for figure in result.figures:
            print(f"  {figure.type.value}: {figure.content.caption}")

    print("\n" + "=" * 80)
    print("Analysis complete.")


if __name__ == "__main__":
    main()
