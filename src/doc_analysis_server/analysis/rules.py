"""Per-locale lexical rules for the heuristic analysis.

Every cue the classifier, table, figure and keyword detectors rely on lives
in a RuleSet so a language can be added or tuned without touching the
detectors themselves.
"""

import re
from dataclasses import dataclass

DEFAULT_LOCALE = "zh-CN"

CJK_PATTERN = re.compile(r"[\u4e00-\u9fa5]")
LATIN_PATTERN = re.compile(r"[A-Za-z]")

# Share of CJK characters among letters above which a text is treated as Chinese
CJK_LOCALE_THRESHOLD = 0.2


@dataclass(frozen=True)
class RuleSet:
    locale: str
    language: str

    # Line classification
    chapter_pattern: re.Pattern
    colon_suffixes: tuple[str, ...]
    list_item_pattern: re.Pattern
    contact_cues: tuple[str, ...]

    # Tables
    table_title_cues: tuple[str, ...]
    table_caption_cues: tuple[str, ...]
    key_value_separator: str
    key_value_list_marker: str | None
    numbered_row_patterns: tuple[re.Pattern, ...]
    boolean_values: frozenset[str]
    default_table_title: str

    # Figures
    figure_patterns: tuple[re.Pattern, ...]
    figure_type_cues: tuple[tuple[str, tuple[str, ...]], ...]
    figure_context_cues: tuple[tuple[str, tuple[str, ...]], ...]
    figure_object_cues: tuple[str, ...]

    # Keywords: (keyword, cues that imply it)
    keyword_vocabulary: tuple[tuple[str, tuple[str, ...]], ...]
    default_keywords: tuple[str, ...]
    case_insensitive_keywords: bool = False

    # Placeholder document used when nothing can be decoded
    sample_title_template: str = "{name}"
    sample_body_template: str = "{name}"

    def is_figure_line(self, line: str) -> bool:
        return any(pattern.search(line) for pattern in self.figure_patterns)


ZH_RULES = RuleSet(
    locale="zh-CN",
    language="zh-CN",
    chapter_pattern=re.compile(r"第.*[章节]|[章节].*第"),
    colon_suffixes=("：", ":"),
    list_item_pattern=re.compile(r"^\d+\."),
    contact_cues=("联系", "网站", "邮箱", "电话"),
    table_title_cues=("表", "统计", "数据", "清单"),
    table_caption_cues=("表",),
    key_value_separator="：",
    key_value_list_marker="、",
    numbered_row_patterns=(
        re.compile(r"^\d+[.)]\s"),
        re.compile(r"^[一二三四五六七八九十]+[.)、]\s"),
    ),
    boolean_values=frozenset({"true", "false", "yes", "no", "是", "否"}),
    default_table_title="表格 {index}",
    figure_patterns=(
        re.compile(r"图\s*\d+"),
        re.compile(r"图片\s*\d*"),
        re.compile(r"示意图"),
        re.compile(r"流程图"),
        re.compile(r"架构图"),
        re.compile(r"截图"),
        re.compile(r"图表"),
        re.compile(r"图像"),
        re.compile(r"插图"),
        re.compile(r"配图"),
        re.compile(r"如图所示"),
        re.compile(r"参见图"),
        re.compile(r"见图"),
        re.compile(r"如下图"),
        re.compile(r"上图"),
        re.compile(r"下图"),
        re.compile(r"\[图\]"),
        re.compile(r"Figure\s*\d+", re.IGNORECASE),
    ),
    figure_type_cues=(
        ("flowchart", ("流程图",)),
        ("architecture", ("架构图",)),
        ("diagram", ("示意图",)),
        ("chart", ("图表",)),
        ("screenshot", ("截图",)),
    ),
    figure_context_cues=(
        ("显示", ("显示", "展示")),
        ("流程", ("流程", "步骤")),
        ("结构", ("结构", "架构")),
        ("数据", ("数据", "统计")),
        ("系统", ("系统", "模块")),
    ),
    figure_object_cues=("按钮", "菜单", "窗口", "界面", "图标", "文本", "表格", "列表"),
    keyword_vocabulary=(
        ("EasyDoc", ("EasyDoc",)),
        ("文档", ("文档",)),
        ("解析", ("解析",)),
        ("系统", ("系统",)),
        ("功能", ("功能",)),
        ("技术", ("技术",)),
        ("AI", ("AI", "人工智能")),
        ("处理", ("处理",)),
        ("分析", ("分析",)),
    ),
    default_keywords=("文本", "内容"),
    sample_title_template="{name} - 解析标题",
    sample_body_template=(
        "这是 {name} 的解析内容。由于无法读取文件内容（{reason}），这里显示的是基础示例数据。"
        "请尝试以其他格式（如 PDF 或 TXT）重新上传，并确认文件未损坏。"
    ),
)


EN_RULES = RuleSet(
    locale="en",
    language="en",
    chapter_pattern=re.compile(
        r"\b(chapter|section|part)\s+(\d+|[ivxlc]+|one|two|three|four|five|six|seven|eight|nine|ten)\b",
        re.IGNORECASE,
    ),
    colon_suffixes=(":", "："),
    list_item_pattern=re.compile(r"^\d+\."),
    contact_cues=("contact", "website", "email", "e-mail", "phone", "tel:"),
    table_title_cues=("table", "statistics", "data", "list"),
    table_caption_cues=("table",),
    key_value_separator="：",
    key_value_list_marker=None,
    numbered_row_patterns=(re.compile(r"^\d+[.)]\s"),),
    boolean_values=frozenset({"true", "false", "yes", "no"}),
    default_table_title="Table {index}",
    figure_patterns=(
        re.compile(r"\bFigure\s*\d+", re.IGNORECASE),
        re.compile(r"\bFig\.\s*\d+", re.IGNORECASE),
        re.compile(r"\[image\]", re.IGNORECASE),
        re.compile(r"\bscreenshot\b", re.IGNORECASE),
        re.compile(r"\bdiagram\b", re.IGNORECASE),
        re.compile(r"\bflow\s?chart\b", re.IGNORECASE),
        re.compile(r"\bchart\b", re.IGNORECASE),
    ),
    figure_type_cues=(
        ("flowchart", ("flowchart", "flow chart")),
        ("architecture", ("architecture",)),
        ("diagram", ("diagram",)),
        ("chart", ("chart", "graph")),
        ("screenshot", ("screenshot",)),
    ),
    figure_context_cues=(
        ("shows", ("show", "display")),
        ("process", ("process", "step")),
        ("structure", ("structure", "architecture")),
        ("data", ("data", "statistic")),
        ("system", ("system", "module")),
    ),
    figure_object_cues=("button", "menu", "window", "interface", "icon", "text", "table", "list"),
    keyword_vocabulary=(
        ("EasyDoc", ("easydoc",)),
        ("document", ("document",)),
        ("parse", ("parse", "parsing")),
        ("system", ("system",)),
        ("feature", ("feature",)),
        ("technology", ("technology", "technical")),
        ("AI", ("ai", "artificial intelligence")),
        ("process", ("process",)),
        ("analysis", ("analysis", "analyze", "analyse")),
    ),
    default_keywords=("text", "content"),
    case_insensitive_keywords=True,
    sample_title_template="{name} - Parsed Title",
    sample_body_template=(
        "This is the parsed content of {name}. The file could not be read ({reason}), "
        "so basic sample data is shown instead. Try uploading it again in a different "
        "format (PDF or TXT) and make sure the file is not corrupted."
    ),
)


RULESETS: dict[str, RuleSet] = {
    ZH_RULES.locale: ZH_RULES,
    EN_RULES.locale: EN_RULES,
}


def detect_locale(text: str) -> str:
    """Guess the locale of a text from its share of CJK characters.

    Text with no letters at all falls back to DEFAULT_LOCALE.
    """
    cjk = len(CJK_PATTERN.findall(text))
    latin = len(LATIN_PATTERN.findall(text))
    if cjk + latin == 0:
        return DEFAULT_LOCALE
    return "zh-CN" if cjk / (cjk + latin) >= CJK_LOCALE_THRESHOLD else "en"


def get_rules(locale: str | None = None, text: str | None = None) -> RuleSet:
    """Resolve a RuleSet by locale; "auto" or None detects it from text.

    Raises:
        KeyError: If the locale has no registered rule set.
    """
    if locale in (None, "", "auto"):
        locale = detect_locale(text or "")
    if locale not in RULESETS:
        raise KeyError(f"No rule set registered for locale {locale!r}")
    return RULESETS[locale]
