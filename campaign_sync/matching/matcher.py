from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Literal

from campaign_sync.matching.normalize import DEFAULT_NORMALIZER, NameNormalizer

SPONSOR_POINTS = 10
PORTFOLIO_POINTS = 20
REQUIRED_SCORE = SPONSOR_POINTS + PORTFOLIO_POINTS
MIN_SEGMENTS = 2

NoMatchCode = Literal["insufficient_segments", "no_match"]


@dataclass(slots=True)
class EngagementCandidate:
    engagement_id: str
    name: str
    sponsor_name: str | None
    portfolio_company: str | None

    @property
    def is_eligible(self) -> bool:
        return bool((self.sponsor_name or "").strip() and (self.portfolio_company or "").strip())


@dataclass(slots=True, frozen=True)
class Matched:
    engagement_id: str
    engagement_name: str


@dataclass(slots=True, frozen=True)
class NoMatch:
    code: NoMatchCode
    reason: str


@dataclass(slots=True, frozen=True)
class Ambiguous:
    candidate_ids: tuple[str, ...]
    candidate_names: tuple[str, ...]
    reason: str
    code: str = "ambiguous_match"


MatchResult = Matched | NoMatch | Ambiguous


class FuzzyMatcher:
    """Positional two-field matcher: segment 0 against sponsor, segment 1 against portfolio company.

    Both fields must match independently; ties are surfaced as ``Ambiguous`` and never resolved here.
    """

    def __init__(self, normalizer: NameNormalizer | None = None) -> None:
        self.normalizer = normalizer or DEFAULT_NORMALIZER

    def find_match(
        self,
        segments: Sequence[str],
        engagements: Sequence[EngagementCandidate],
        *,
        aliases: Mapping[str, str] | None = None,
    ) -> MatchResult:
        if len(segments) < MIN_SEGMENTS:
            return NoMatch(
                code="insufficient_segments",
                reason=f"need at least {MIN_SEGMENTS} segments, parsed {len(segments)}: {list(segments)!r}",
            )

        sponsor_segment = self.normalizer.expand_abbreviations(segments[0], aliases)
        client_segment = self.normalizer.expand_abbreviations(segments[1], aliases)

        qualifying: list[EngagementCandidate] = []
        for engagement in engagements:
            if not engagement.is_eligible:
                continue
            if self.score(sponsor_segment, client_segment, engagement, aliases=aliases) == REQUIRED_SCORE:
                qualifying.append(engagement)

        if not qualifying:
            return NoMatch(
                code="no_match",
                reason=f"no engagement matched sponsor={segments[0]!r} client={segments[1]!r}",
            )
        if len(qualifying) == 1:
            return Matched(engagement_id=qualifying[0].engagement_id, engagement_name=qualifying[0].name)

        names = tuple(row.name for row in qualifying)
        return Ambiguous(
            candidate_ids=tuple(row.engagement_id for row in qualifying),
            candidate_names=names,
            reason=(
                f"{len(qualifying)} engagements tied for sponsor={segments[0]!r} "
                f"client={segments[1]!r}: {', '.join(names)}"
            ),
        )

    def score(
        self,
        sponsor_segment: str,
        client_segment: str,
        engagement: EngagementCandidate,
        *,
        aliases: Mapping[str, str] | None = None,
    ) -> int:
        score = 0
        sponsor_name = self.normalizer.expand_abbreviations(engagement.sponsor_name or "", aliases)
        portfolio_company = self.normalizer.expand_abbreviations(engagement.portfolio_company or "", aliases)
        if self.normalizer.high_confidence_match(sponsor_segment, sponsor_name):
            score += SPONSOR_POINTS
        if self.normalizer.high_confidence_match(client_segment, portfolio_company):
            score += PORTFOLIO_POINTS
        return score
