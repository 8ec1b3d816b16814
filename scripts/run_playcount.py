# Dev-only: run the play-count pipeline against the live web player
import asyncio
import json
import sys

from core import fetch_track_play_count
from lib.playcount import InvalidTrackReference, resolve_track_id

DEFAULT_REF = "https://open.spotify.com/track/4nlH5jTAEsKrWYYVfUouRX"

REF = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_REF
WAIT_FOR_MARKERS = "--markers" in sys.argv[2:]


async def main() -> int:
    print("USING_REF:", REF)
    try:
        track_id = resolve_track_id(REF)
    except InvalidTrackReference as e:
        print("ERROR:", e)
        return 2

    r = await fetch_track_play_count(track_id, wait_for_markers=WAIT_FOR_MARKERS)

    print("track_id:", track_id)
    print("trackName:", r.get("trackName"))
    print("playCount:", r.get("playCount"), "confidence:", r.get("confidence"))
    print("candidates:", len(r.get("playCounts") or []), "popularTracks:", len(r.get("popularTracks") or []))
    print("revenue:", json.dumps(r.get("revenue"), ensure_ascii=False))
    print("meta:", r.get("meta"))
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
