#!/usr/bin/env python3
"""
Play-count endpoint latency diagnosis tool.
Measures: TTFB, full response, backend session time (per-request browser cold start).
"""
import sys
import time

import requests

BACKEND_URL = "http://127.0.0.1:3001"
TEST_TRACK_ID = "4nlH5jTAEsKrWYYVfUouRX"
TEST_ALBUM_ID = "4yP0hdKOZPNshxUOjY0cZj"  # album id: page has no play count


def measure_request(track_id, label):
    """Measure a single /api/spotify/track request."""
    print(f"\n{'='*60}")
    print(f"{label}")
    print(f"{'='*60}")

    t_start = time.time()
    try:
        response = requests.get(
            f"{BACKEND_URL}/api/spotify/track/{track_id}",
            timeout=90,
            stream=True,
        )
        ttfb_ms = (time.time() - t_start) * 1000
        data = response.json()
        response_time_ms = (time.time() - t_start) * 1000
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return None

    if response.status_code != 200:
        print(f"\n❌ HTTP {response.status_code}: {data.get('error')} ({data.get('details')})")
        return None

    meta = data.get("meta") or {}
    session_ms = meta.get("session_ms", 0)
    total_backend_ms = meta.get("total_ms", 0)
    overhead_ms = response_time_ms - total_backend_ms

    print(f"\n📊 Timing Breakdown:")
    print(f"  TTFB (Time To First Byte):  {ttfb_ms:8.1f} ms")
    print(f"  Full Response:              {response_time_ms:8.1f} ms")
    print(f"\n🔧 Backend Metrics:")
    print(f"  session_ms (launch→close):  {session_ms:8.1f} ms")
    print(f"  total_backend_ms:           {total_backend_ms:8.1f} ms")
    print(f"  Network + overhead:         {overhead_ms:8.1f} ms")

    revenue = data.get("revenue") or {}
    print(f"\n✅ Result: playCount={data.get('playCount')} confidence={data.get('confidence')} "
          f"revenue={revenue.get('total')} {revenue.get('currency')}")

    return {
        "ttfb_ms": ttfb_ms,
        "response_time_ms": response_time_ms,
        "session_ms": session_ms,
        "backend_ms": total_backend_ms,
    }


def main():
    track_id = sys.argv[1] if len(sys.argv) > 1 else TEST_TRACK_ID

    track = measure_request(track_id, "TEST 1: Track page")
    time.sleep(2)
    album = measure_request(TEST_ALBUM_ID, "TEST 2: Non-track id (expect playCount=null)")

    print(f"\n\n{'='*60}")
    print("📈 SUMMARY")
    print(f"{'='*60}")
    for label, result in (("track", track), ("album", album)):
        if result:
            print(f"\n{label}: {result['response_time_ms']:.0f}ms total")
            print(f"  - Browser session: {result['session_ms']:.0f}ms")
            print(f"  - Backend: {result['backend_ms']:.0f}ms")

    if track and track["session_ms"] > 15000:
        print(f"\n⚠️  BOTTLENECK IDENTIFIED: browser session (launch + networkidle + settle delay)")
        print(f"   - Recommendation: PLAYCOUNT_WAIT_FOR_MARKERS=1 or a slimmer Chromium build")


if __name__ == "__main__":
    main()
