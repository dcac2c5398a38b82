from __future__ import annotations

import re
from collections.abc import Iterable

SEGMENT_DELIMITER = " - "
MIN_SEGMENT_LENGTH = 2

SHORT_SPONSOR_ALLOWLIST: frozenset[str] = frozenset({"gp", "nh"})

_INITIALS_RE = re.compile(r"^[a-z]{1,2}$", re.IGNORECASE)
_JOINED_INITIALS_RE = re.compile(r"^[a-z]{1,2}(?:\s*[/&,+]\s*[a-z]{1,2})+$", re.IGNORECASE)
_LEADING_TAG_RE = re.compile(r"^\s*(?:\[[^\]]*\]|\{[^}]*\}|\([^)]*\)|\*+)\s*")

_MONTHS = (
    r"(?:january|february|march|april|may|june|july|august|september|october|november|december"
    r"|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec)\.?"
)

DENY_PATTERNS: tuple[str, ...] = (
    # tier / phase labels
    r"^(?:tier|phase|wave|round|batch|step|sequence|seq|v|t|p)\s*[-#]?\s*\d+[a-z]?$",
    r"^(?:tier|phase)\s+(?:one|two|three|four|five|[a-e])$",
    # pure numerics
    r"^#?\d+(?:\.\d+)?$",
    # boilerplate
    r"\bre-?\s?engage(?:ment|d)?\b",
    r"\bre-?target(?:ing|ed)?\b",
    r"\bgifting\b",
    r"\btop\s+targets?\b",
    r"\bhighly\s+personali[sz]ed\b",
    r"\bnew\s+script\b",
    r"\bpart\s*\d+\b",
    r"^(?:copy|short)(?:\s*(?:\d+|version|v\d+))?$",
    # dates
    r"^\d{1,2}[/.-]\d{1,2}(?:[/.-]\d{2,4})?$",
    r"^\d{4}[/.-]\d{1,2}(?:[/.-]\d{1,2})?$",
    rf"^{_MONTHS}(?:\s*\d{{1,2}})?(?:,?\s*\d{{2,4}})?$",
    r"^q[1-4](?:\s*'?\d{2,4})?$",
    r"^(?:19|20)\d{2}$",
    # channels
    r"^(?:e-?mail|gmail|outlook|calls?|calling|cold\s+calls?|linkedin)(?:\s+only)?$",
    r"\bli\s*\+",
    r"^(?:e-?mail|gmail|calls?)\s*[+&/]",
)


class SegmentParser:
    """Split campaign names into the ordered segments the matcher reads positionally."""

    def __init__(
        self,
        *,
        deny_patterns: Iterable[str] = DENY_PATTERNS,
        short_sponsor_allowlist: Iterable[str] = SHORT_SPONSOR_ALLOWLIST,
        delimiter: str = SEGMENT_DELIMITER,
    ) -> None:
        self._deny = tuple(re.compile(pattern, re.IGNORECASE) for pattern in deny_patterns)
        self._allowlist = frozenset(item.strip().casefold() for item in short_sponsor_allowlist if item.strip())
        self._delimiter = delimiter

    def parse(self, raw_name: str | None) -> list[str]:
        if not raw_name:
            return []
        remainder = strip_leading_tags(raw_name)
        segments: list[str] = []
        for part in remainder.split(self._delimiter):
            candidate = part.strip()
            if len(candidate) < MIN_SEGMENT_LENGTH:
                continue
            if self.is_boilerplate(candidate):
                continue
            segments.append(candidate)
        return segments

    def is_boilerplate(self, segment: str) -> bool:
        if segment.casefold() in self._allowlist:
            return False
        if _INITIALS_RE.match(segment) or _JOINED_INITIALS_RE.match(segment):
            return True
        return any(pattern.search(segment) for pattern in self._deny)


DEFAULT_PARSER = SegmentParser()


def parse_segments(raw_name: str | None) -> list[str]:
    return DEFAULT_PARSER.parse(raw_name)


def strip_leading_tags(raw_name: str) -> str:
    remainder = raw_name
    while True:
        stripped = _LEADING_TAG_RE.sub("", remainder, count=1)
        if stripped == remainder:
            return remainder.strip()
        remainder = stripped
