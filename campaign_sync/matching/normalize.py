"""Organization-name canonicalization used by the campaign matcher.

Names coming out of outbound platforms are free text ("Acme Capital, LLC",
"[Ended] Acme Cap"). Matching compares canonical forms: lower-cased, without
status tags, legal suffix words, periods or commas, with ``&`` spelled out.

Two expansion layers run on top of that:

- workspace aliases (``expand_abbreviations``), loaded per invocation from
  storage, applied before normalization;
- built-in business shorthands (``expand_builtin``), applied as a second
  round inside ``high_confidence_match``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

LEGAL_SUFFIX_WORDS: tuple[str, ...] = (
    "llc",
    "inc",
    "partners",
    "capital",
    "fund",
    "group",
    "holdings",
    "management",
    "equity",
    "corp",
    "corporation",
    "ltd",
    "lp",
    "llp",
    "co",
    "company",
)

BUILTIN_ABBREVIATIONS: dict[str, str] = {
    "cap": "capital",
    "mgmt": "management",
    "mgt": "management",
    "sr": "senior",
    "jr": "junior",
    "intl": "international",
    "natl": "national",
    "svc": "service",
    "svcs": "services",
    "assoc": "associates",
    "bros": "brothers",
    "mfg": "manufacturing",
    "dist": "distribution",
    "hldgs": "holdings",
    "ptnrs": "partners",
    "grp": "group",
    "tech": "technology",
    "prop": "property",
    "props": "properties",
    "hc": "healthcare",
}

MIN_SUBSTRING_LENGTH = 3

_STATUS_TAG_RE = re.compile(r"\[[^\]]*\]|\{[^}]*\}|\([^)]*\)")
_PUNCTUATION_RE = re.compile(r"[.,]")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_DELIMITER_RE = re.compile(r"(\s+|-)")


class NameNormalizer:
    def __init__(
        self,
        *,
        suffix_words: Iterable[str] = LEGAL_SUFFIX_WORDS,
        builtin_abbreviations: Mapping[str, str] = BUILTIN_ABBREVIATIONS,
    ) -> None:
        words = sorted({word.strip().casefold() for word in suffix_words if word.strip()}, key=len, reverse=True)
        self._suffix_re = re.compile(r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b") if words else None
        self._builtin = {key.casefold(): value for key, value in builtin_abbreviations.items()}

    def normalize(self, text: str | None) -> str:
        if not text:
            return ""
        value = _STATUS_TAG_RE.sub(" ", text.casefold())
        value = value.replace("&", " and ")
        value = _PUNCTUATION_RE.sub("", value)
        if self._suffix_re is not None:
            value = self._suffix_re.sub(" ", value)
        return _WHITESPACE_RE.sub(" ", value).strip()

    def expand_abbreviations(self, text: str, alias_map: Mapping[str, str] | None) -> str:
        """Expand workspace aliases; ``alias_map`` keys must already be case-folded."""
        if not alias_map or not text:
            return text
        exact = alias_map.get(text.strip().casefold())
        if exact:
            return exact
        return _expand_tokens(text, alias_map)

    def expand_builtin(self, text: str) -> str:
        if not text:
            return text
        return _expand_tokens(text, self._builtin)

    def high_confidence_match(self, left: str | None, right: str | None) -> bool:
        normalized_left = self.normalize(left)
        normalized_right = self.normalize(right)
        if not normalized_left or not normalized_right:
            return False
        if _equal_or_contained(normalized_left, normalized_right):
            return True

        expanded_left = self.normalize(self.expand_builtin(normalized_left))
        expanded_right = self.normalize(self.expand_builtin(normalized_right))
        if not expanded_left or not expanded_right:
            return False
        return _equal_or_contained(expanded_left, expanded_right)


DEFAULT_NORMALIZER = NameNormalizer()


def normalize_name(text: str | None) -> str:
    return DEFAULT_NORMALIZER.normalize(text)


def expand_abbreviations(text: str, alias_map: Mapping[str, str] | None) -> str:
    return DEFAULT_NORMALIZER.expand_abbreviations(text, alias_map)


def build_alias_map(rows: Iterable[tuple[str, str]]) -> dict[str, str]:
    aliases: dict[str, str] = {}
    for alias, canonical_name in rows:
        key = (alias or "").strip().casefold()
        value = (canonical_name or "").strip()
        if key and value:
            aliases[key] = value
    return aliases


def _expand_tokens(text: str, table: Mapping[str, str]) -> str:
    parts = _TOKEN_DELIMITER_RE.split(text)
    expanded: list[str] = []
    for part in parts:
        if not part or _TOKEN_DELIMITER_RE.fullmatch(part):
            expanded.append(part)
            continue
        expanded.append(table.get(part.casefold(), part))
    return "".join(expanded)


def _equal_or_contained(left: str, right: str) -> bool:
    if left == right:
        return True
    shorter, longer = (left, right) if len(left) <= len(right) else (right, left)
    return len(shorter) >= MIN_SUBSTRING_LENGTH and shorter in longer
