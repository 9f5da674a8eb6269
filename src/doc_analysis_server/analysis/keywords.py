"""Keyword tagging against a fixed per-locale vocabulary."""

import re

from .rules import RuleSet

_LATIN_CUE = re.compile(r"[A-Za-z0-9 .\-]+")


def _contains_cue(haystack: str, cue: str) -> bool:
    """Substring match for CJK cues; Latin cues must start a Latin word.

    Short Latin cues such as "ai" must also end one, so they do not match
    inside "email" or "maintain". CJK neighbours count as word breaks.
    """
    if not _LATIN_CUE.fullmatch(cue):
        return cue in haystack
    suffix = r"(?![A-Za-z0-9])" if len(cue) <= 3 else ""
    return re.search(rf"(?<![A-Za-z0-9]){re.escape(cue)}{suffix}", haystack) is not None


def extract_keywords(text: str, rules: RuleSet) -> list[str]:
    """Return the vocabulary terms present in text, in vocabulary order.

    Falls back to the locale's generic two-term list when nothing matches.
    """
    haystack = text.lower() if rules.case_insensitive_keywords else text
    keywords = [
        keyword
        for keyword, cues in rules.keyword_vocabulary
        if any(_contains_cue(haystack, cue) for cue in cues)
    ]
    return keywords or list(rules.default_keywords)
