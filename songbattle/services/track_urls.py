"""Spotify track URL validation and normalisation."""

import re
from dataclasses import dataclass
from typing import Optional


TRACK_ID_RE = re.compile(r"^[a-zA-Z0-9]{22}$")

# open.spotify.com/track/<id>, open.spotify.com/intl-de/track/<id>?si=..., spotify:track:<id>
_WEB_RE = re.compile(r"spotify\.com/(?:[a-zA-Z-]+/)?track/([a-zA-Z0-9]+)")
_URI_RE = re.compile(r"spotify:track:([a-zA-Z0-9]+)")

CANONICAL_PREFIX = "https://open.spotify.com/track/"


@dataclass(frozen=True)
class TrackUrlCheck:
    is_valid: bool
    track_id: Optional[str] = None
    error: Optional[str] = None


def _extract_track_id(value: str) -> Optional[str]:
    match = _WEB_RE.search(value) or _URI_RE.search(value)
    return match.group(1) if match else None


def validate_track_url(url: Optional[str]) -> TrackUrlCheck:
    value = (url or "").strip()
    if not value:
        return TrackUrlCheck(is_valid=False, error="URL is required")
    if "spotify.com" not in value and not value.startswith("spotify:"):
        return TrackUrlCheck(is_valid=False, error="Must be a Spotify URL")

    track_id = _extract_track_id(value)
    if not track_id or not TRACK_ID_RE.match(track_id):
        return TrackUrlCheck(is_valid=False, error="Invalid Spotify track ID format")
    return TrackUrlCheck(is_valid=True, track_id=track_id)


def normalize_track_url(url: str) -> str:
    check = validate_track_url(url)
    if not check.is_valid:
        raise ValueError("Cannot normalize invalid Spotify URL")
    return f"{CANONICAL_PREFIX}{check.track_id}"


def track_uri(url: str) -> Optional[str]:
    check = validate_track_url(url)
    if not check.is_valid:
        return None
    return f"spotify:track:{check.track_id}"
