"""GPX 1.1 export for saved trips.

One <trk> per trip, one <trkseg> per path segment. Empty segments are kept
so a reader sees the same breaks the map showed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape, quoteattr

if TYPE_CHECKING:
    from tracker.core.models import SavedTrip

GPX_CREATOR = "trip-tracker"


def iso_utc(timestamp_ms: int) -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def export_gpx(trip: SavedTrip, creator: str = GPX_CREATOR) -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<gpx version="1.1" creator={quoteattr(creator)} xmlns="http://www.topografix.com/GPX/1/1">',
        '  <metadata>',
        f'    <time>{iso_utc(trip.started_at_ms)}</time>',
        '  </metadata>',
        '  <trk>',
        f'    <name>{escape(trip.id)}</name>',
    ]
    for seg in trip.segments:
        lines.append('    <trkseg>')
        for p in seg.points:
            lines.append(
                f'      <trkpt lat="{p.lat:.6f}" lon="{p.lng:.6f}">'
                f'<time>{iso_utc(p.timestamp_ms)}</time></trkpt>'
            )
        lines.append('    </trkseg>')
    lines.append('  </trk>')
    lines.append('</gpx>')
    return '\n'.join(lines) + '\n'
