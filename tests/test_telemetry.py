from campaign_sync.core.telemetry import parse_headers


def test_parse_headers_splits_pairs_and_skips_malformed_items() -> None:
    assert parse_headers("authorization=Bearer abc, x-team = sync ,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-team": "sync",
    }


def test_parse_headers_handles_missing_value() -> None:
    assert parse_headers(None) == {}
    assert parse_headers("") == {}
