import pytest

from campaign_sync.matching.normalize import (
    NameNormalizer,
    build_alias_map,
    expand_abbreviations,
    normalize_name,
)


@pytest.mark.parametrize(
    "raw",
    [
        "Acme Capital, LLC",
        "[Ended] Acme Cap. Partners",
        "Smith & Co",
        "  Roadrunner   Holdings Inc.  ",
        "(Paused) {draft} Orion Group",
        "",
    ],
)
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize_name(raw)
    assert normalize_name(once) == once


def test_normalize_strips_tags_suffixes_and_punctuation() -> None:
    assert normalize_name("[Ended] Acme Capital, LLC") == "acme"
    assert normalize_name("Smith & Jones") == "smith and jones"
    assert normalize_name("Roadrunner Inc.") == "roadrunner"
    assert normalize_name(None) == ""


def test_suffix_removal_is_whole_word_only() -> None:
    assert normalize_name("Incubator Labs") == "incubator labs"
    assert normalize_name("Cologne Fund") == "cologne"


def test_expand_abbreviations_with_empty_map_is_identity() -> None:
    for text in ["GP Partners", "abc-def", "  spaced  out "]:
        assert expand_abbreviations(text, {}) == text
        assert expand_abbreviations(text, None) == text


def test_expand_abbreviations_prefers_exact_match() -> None:
    aliases = build_alias_map([("BR", "Blue Ridge"), ("Blue Ridge Cap", "Blue Ridge Capital")])
    assert expand_abbreviations("blue ridge cap", aliases) == "Blue Ridge Capital"


def test_expand_abbreviations_per_token_keeps_delimiters() -> None:
    aliases = build_alias_map([("br", "Blue Ridge"), ("hc", "Healthcare")])
    assert expand_abbreviations("BR-HC  Fund", aliases) == "Blue Ridge-Healthcare  Fund"


def test_build_alias_map_casefolds_keys_and_skips_blanks() -> None:
    aliases = build_alias_map([("  TPG ", "Texas Pacific Group"), ("", "Nothing"), ("x", "  ")])
    assert aliases == {"tpg": "Texas Pacific Group"}


def test_high_confidence_match_on_equality_and_containment() -> None:
    normalizer = NameNormalizer()
    assert normalizer.high_confidence_match("Acme Capital", "Acme")
    assert normalizer.high_confidence_match("Roadrunner Logistics", "Roadrunner")
    assert not normalizer.high_confidence_match("Acme", "Zenith")


def test_high_confidence_match_rejects_short_substrings() -> None:
    normalizer = NameNormalizer()
    assert not normalizer.high_confidence_match("AB", "Abbott Labs")


def test_high_confidence_match_uses_builtin_shorthands() -> None:
    normalizer = NameNormalizer()
    assert normalizer.high_confidence_match("Intl Paper", "International Paper")


def test_normalizer_accepts_custom_tables() -> None:
    normalizer = NameNormalizer(suffix_words=["labs"], builtin_abbreviations={"xyz": "zenith"})
    assert normalizer.normalize("Acme Labs LLC") == "acme llc"
    assert normalizer.high_confidence_match("XYZ Robotics", "Zenith Robotics")
