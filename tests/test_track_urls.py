import pytest

from songbattle.services.track_urls import normalize_track_url, track_uri, validate_track_url


TRACK_ID = "4uLU6hMCjMI75M1A2tKUQC"


@pytest.mark.parametrize(
    "url",
    [
        f"https://open.spotify.com/track/{TRACK_ID}",
        f"https://open.spotify.com/track/{TRACK_ID}?si=abc123",
        f"https://open.spotify.com/intl-de/track/{TRACK_ID}",
        f"spotify:track:{TRACK_ID}",
        f"  https://open.spotify.com/track/{TRACK_ID}  ",
    ],
)
def test_accepted_forms_normalize_to_canonical_url(url: str) -> None:
    check = validate_track_url(url)
    assert check.is_valid
    assert check.track_id == TRACK_ID
    assert normalize_track_url(url) == f"https://open.spotify.com/track/{TRACK_ID}"


@pytest.mark.parametrize(
    ("url", "error"),
    [
        ("", "URL is required"),
        (None, "URL is required"),
        ("https://youtube.com/watch?v=abc", "Must be a Spotify URL"),
        ("https://open.spotify.com/track/short", "Invalid Spotify track ID format"),
        ("https://open.spotify.com/album/4uLU6hMCjMI75M1A2tKUQC", "Invalid Spotify track ID format"),
    ],
)
def test_rejected_urls_carry_a_reason(url, error: str) -> None:
    check = validate_track_url(url)
    assert not check.is_valid
    assert check.error == error


def test_normalize_rejects_invalid_url() -> None:
    with pytest.raises(ValueError):
        normalize_track_url("https://example.com/song")


def test_track_uri() -> None:
    assert track_uri(f"https://open.spotify.com/track/{TRACK_ID}") == f"spotify:track:{TRACK_ID}"
    assert track_uri("not a url") is None
