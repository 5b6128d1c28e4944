from datetime import datetime
import json

import pytest

from listenlog.utils.history_parser import (
    HistoryParseError,
    chunked,
    dedupe_key,
    parse_history,
    parse_timestamp,
)
from tests.helpers import extended_entry


def test_parse_extended_export_maps_playback_details() -> None:
    text = json.dumps([extended_entry(shuffle=True, skipped=False)])

    result = parse_history(text)

    assert len(result.records) == 1
    record = result.records[0]
    assert record.ts == datetime(2024, 3, 1, 12, 0, 0)
    assert record.artist == "Artist A"
    assert record.track == "Track A"
    assert record.album == "Album A"
    assert record.ms_played == 180_000
    assert record.shuffle is True
    assert record.skipped is False
    assert record.reason_start == "clickrow"
    assert record.spotify_track_uri == "spotify:track:abc"


def test_parse_account_data_export() -> None:
    text = json.dumps(
        [
            {
                "endTime": "2023-05-04 21:15",
                "artistName": "Legacy Artist",
                "trackName": "Legacy Track",
                "msPlayed": 95000,
            }
        ]
    )

    record = parse_history(text).records[0]

    assert record.ts == datetime(2023, 5, 4, 21, 15)
    assert record.artist == "Legacy Artist"
    assert record.track == "Legacy Track"
    assert record.ms_played == 95000
    assert record.shuffle is None


def test_parse_skips_entries_without_timestamp_and_counts_duplicates() -> None:
    entry = extended_entry()
    text = json.dumps([entry, dict(entry), {"artistName": "No time"}, "junk"])

    result = parse_history(text)

    assert len(result.records) == 1
    assert result.duplicates == 1
    assert result.skipped == 2


def test_parse_keeps_podcast_entries_without_track() -> None:
    text = json.dumps(
        [
            extended_entry(
                master_metadata_track_name=None,
                master_metadata_album_artist_name=None,
                episode_name="Episode",
            )
        ]
    )

    record = parse_history(text).records[0]

    assert record.track is None
    assert record.artist is None


def test_parse_negative_or_invalid_duration_becomes_zero() -> None:
    text = json.dumps(
        [
            extended_entry(ms_played=-10),
            extended_entry(ts="2024-03-01T12:05:00Z", ms_played="not-a-number"),
        ]
    )

    durations = [record.ms_played for record in parse_history(text).records]

    assert durations == [0, 0]


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("{not json", "Invalid JSON"),
        ('{"ts": "2024-01-01T00:00:00Z"}', "Expected an array of listening records"),
        ("[]", "No valid listening records"),
        ('[{"artistName": "x"}]', "No valid listening records"),
    ],
)
def test_parse_rejects_unusable_documents(text: str, message: str) -> None:
    with pytest.raises(HistoryParseError) as exc_info:
        parse_history(text)

    assert message in exc_info.value.message


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5)
    assert parse_timestamp("2024-01-02T05:04:05+02:00") == datetime(2024, 1, 2, 3, 4, 5)
    assert parse_timestamp(0) == datetime(1970, 1, 1)
    assert parse_timestamp("   ") is None
    assert parse_timestamp("yesterday") is None


def test_dedupe_key_distinguishes_duration() -> None:
    first = parse_history(json.dumps([extended_entry(ms_played=1000)])).records[0]
    second = parse_history(json.dumps([extended_entry(ms_played=2000)])).records[0]

    assert dedupe_key(first) != dedupe_key(second)


def test_chunked_splits_sequences() -> None:
    assert [list(chunk) for chunk in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))
