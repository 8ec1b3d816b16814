"""
Spotify トラック参照（URI / URL）からトラックIDを取り出す。

Supported formats (matched as given, no trimming):
- spotify:track:<id>
- https://open.spotify.com/track/<id>
- https://open.spotify.com/track/<id>?si=...  (query is discarded)
"""
from __future__ import annotations

import re

INVALID_REFERENCE_MESSAGE = "Invalid Spotify track URI or URL format"

# \Z rather than $: a trailing newline is not part of either shape
_URI_RE = re.compile(r"^spotify:track:([A-Za-z0-9]+)(?:\?|\Z)")
_URL_RE = re.compile(r"^https://open\.spotify\.com/track/([A-Za-z0-9]+)(?:\?|\Z)")
_TRACK_ID_RE = re.compile(r"[A-Za-z0-9]+")


class InvalidTrackReference(ValueError):
    """Raised for input that is neither a track URI nor a track URL."""

    def __init__(self, reference: str | None = None):
        super().__init__(INVALID_REFERENCE_MESSAGE)
        self.reference = reference


def resolve_track_id(reference: str | None) -> str:
    s = reference or ""
    if s.startswith("spotify:track:"):
        m = _URI_RE.match(s)
    elif s.startswith("https://open.spotify.com/track/"):
        m = _URL_RE.match(s)
    else:
        m = None
    if not m:
        raise InvalidTrackReference(reference)
    return m.group(1)


def is_valid_track_id(track_id: str | None) -> bool:
    return bool(track_id) and _TRACK_ID_RE.fullmatch(track_id) is not None
