"""Detect tables in unstructured text.

A region opens either on a title line (a table cue plus a colon) or on a
line that looks delimited (pipes, tabs, key/value lists, numbered rows).
Title regions run to the next blank line; delimiter regions also end at the
first line that no longer looks delimited.
"""

import math
import re
from collections import Counter
from datetime import datetime

from .models import Position, TableCell, TableData, TableMetadata, TableStructure
from .rules import RuleSet

TABLE_CONFIDENCE = 0.85
MIN_REGION_LINES = 2
MIN_ROW_CELLS = 2

EMPTY_VALUES = {"", "-", "N/A"}
MIN_DATE_LENGTH = 7

DATE_FORMATS = (
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%Y年%m月%d日",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
)

_SPACE_RUN = re.compile(r"\s{2,}")

TITLE_MODE = "title"
DELIMITER_MODE = "delimiter"


def _has_colon(line: str) -> bool:
    return ":" in line or "：" in line


def _has_cue(line: str, cues: tuple[str, ...]) -> bool:
    lowered = line.lower()
    return any(cue in lowered for cue in cues)


def is_table_title(line: str, rules: RuleSet) -> bool:
    return _has_cue(line, rules.table_title_cues) and _has_colon(line)


def is_table_line(line: str, rules: RuleSet) -> bool:
    """True for lines whose shape suggests a table row."""
    if line.count("|") >= 2 or line.count("\t") >= 2:
        return True
    marker = rules.key_value_list_marker
    if marker and rules.key_value_separator in line and marker in line:
        return True
    return any(pattern.match(line) for pattern in rules.numbered_row_patterns)


def _is_date(value: str) -> bool:
    if len(value) < MIN_DATE_LENGTH:
        return False
    try:
        datetime.fromisoformat(value)
        return True
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            datetime.strptime(value, fmt)
            return True
        except ValueError:
            continue
    return False


def _is_number(value: str) -> bool:
    if "_" in value:
        return False
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def detect_cell_type(value: str, rules: RuleSet) -> str:
    """Classify a cell value as empty, boolean, number, date or text."""
    value = value.strip()
    if value in EMPTY_VALUES:
        return "empty"
    if value.lower() in rules.boolean_values:
        return "boolean"
    if _is_number(value):
        return "number"
    if _is_date(value):
        return "date"
    return "text"


def detect_column_types(rows: list[list[TableCell]]) -> list[str]:
    """Most frequent cell type per column; ties go to the type seen first."""
    if not rows:
        return []

    columns = max(len(row) for row in rows)
    data_types = []
    for col in range(columns):
        types = [row[col].type for row in rows if col < len(row) and row[col].value.strip()]
        if not types:
            data_types.append("empty")
            continue
        data_types.append(Counter(types).most_common(1)[0][0])
    return data_types


def split_cells(line: str, rules: RuleSet) -> list[str]:
    """Split a row using the first delimiter that applies."""
    if "|" in line:
        return [cell.strip() for cell in line.split("|") if cell.strip()]
    if "\t" in line:
        return [cell.strip() for cell in line.split("\t") if cell.strip()]

    separator = rules.key_value_separator
    if separator in line:
        key, value = line.split(separator, 1)
        return [key.strip(), value.strip()]

    cells = [cell.strip() for cell in _SPACE_RUN.split(line) if cell.strip()]
    return cells or [line.strip()]


def _find_regions(lines: list[str], rules: RuleSet) -> list[list[str]]:
    regions = []
    current: list[str] = []
    mode = None

    def close():
        nonlocal current, mode
        if len(current) >= MIN_REGION_LINES:
            regions.append(current)
        current = []
        mode = None

    for raw_line in lines:
        line = raw_line.strip()

        if not line:
            close()
            continue

        if mode == TITLE_MODE:
            current.append(line)
            continue

        if mode == DELIMITER_MODE:
            if is_table_line(line, rules):
                current.append(line)
                continue
            close()

        if is_table_title(line, rules):
            mode = TITLE_MODE
            current = [line]
        elif is_table_line(line, rules):
            mode = DELIMITER_MODE
            current = [line]

    close()
    return regions


def _build_table(
    region: list[str], document_id: str, index: int, rules: RuleSet
) -> TableData | None:
    caption = None
    lines = region
    first = region[0]
    if _has_cue(first, rules.table_caption_cues) or _has_colon(first):
        caption = first
        lines = region[1:]

    rows: list[list[TableCell]] = []
    for line in lines:
        cells = split_cells(line, rules)
        if len(cells) < MIN_ROW_CELLS:
            continue
        is_header = not rows and caption is None
        rows.append([
            TableCell(value=cell, type=detect_cell_type(cell, rules), is_header=is_header)
            for cell in cells
        ])

    if not rows:
        return None

    return TableData(
        id=f"table_{document_id}_{index}",
        position=Position(page=1, x=0, y=index * 100, width=100, height=max(50, len(rows) * 20)),
        structure=TableStructure(
            rows=len(rows),
            columns=max(len(row) for row in rows),
            has_header=caption is None,
            has_footer=False,
        ),
        data=rows,
        metadata=TableMetadata(
            title=caption or rules.default_table_title.format(index=index),
            caption=caption,
            confidence=TABLE_CONFIDENCE,
            data_types=detect_column_types(rows),
        ),
    )


def extract_tables(text: str, document_id: str, rules: RuleSet) -> list[TableData]:
    """Find table regions in text and convert them into TableData.

    Regions that keep no row of at least two cells are dropped. Rows may
    be ragged; ``structure.columns`` is the widest row.
    """
    tables = []
    for region in _find_regions(text.split("\n"), rules):
        table = _build_table(region, document_id, len(tables) + 1, rules)
        if table is not None:
            tables.append(table)
    return tables
