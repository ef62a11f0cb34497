"""Trip API endpoints.

This is the thin FastAPI adapter the map/UI layer talks to. It parses
JSON, converts it to engine calls, and renders engine state back out.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse

from tracker.core.gpx import export_gpx

router = APIRouter(prefix="/api/v1")


class FixError(ValueError):
    pass


def _parse_fix(data: dict) -> dict:
    """Validate one JSON fix into keyword arguments for on_position."""
    if not isinstance(data, dict):
        raise FixError("fix must be an object")
    lng = data.get("lng", data.get("lon"))
    lat = data.get("lat")
    if isinstance(lat, bool) or isinstance(lng, bool) or not isinstance(lat, (int, float)) \
            or not isinstance(lng, (int, float)):
        raise FixError("lat and lng are required numbers")

    kwargs: dict = {"lat": float(lat), "lng": float(lng)}
    ts = data.get("timestamp_ms")
    if ts is not None:
        if not isinstance(ts, (int, float)) or isinstance(ts, bool):
            raise FixError("timestamp_ms must be a number")
        kwargs["timestamp_ms"] = int(ts)
    for key in ("speed_mps", "accuracy_m", "heading_deg"):
        val = data.get(key)
        if val is not None and isinstance(val, (int, float)) and not isinstance(val, bool):
            kwargs[key] = float(val)
    return kwargs


def _trip_view() -> dict:
    from tracker.main import get_engine

    engine = get_engine()
    summary = engine.get_summary()
    link = engine.remote_link
    return {
        "state": engine.state.value,
        "distance_km": engine.distance_km,
        "speed_kmh": engine.speed_kmh,
        "time": engine.time_string(),
        "summary": summary.to_dict(),
        "position": list(engine.position) if engine.position else None,
        "heading_deg": round(engine.heading_deg, 1),
        "segments": len(engine.segments),
        "points": sum(len(s.points) for s in engine.segments),
        "remote": {
            "status": type(link).__name__,
            "activity_id": getattr(link, "activity_id", None),
        },
    }


@router.get("/trip")
async def get_trip() -> dict:
    """Live scalars plus the current summary."""
    return _trip_view()


@router.post("/trip/start")
async def start_trip() -> dict:
    from tracker.main import get_engine

    get_engine().start()
    return _trip_view()


@router.post("/trip/pause")
async def pause_trip() -> dict:
    from tracker.main import get_engine

    get_engine().pause(manual=True)
    return _trip_view()


@router.post("/trip/resume")
async def resume_trip() -> dict:
    from tracker.main import get_engine

    get_engine().resume(manual=True)
    return _trip_view()


@router.post("/trip/finalize")
async def finalize_trip(save: bool = Query(default=True)) -> dict:
    from tracker.main import get_engine

    result = get_engine().finalize(save)
    return {
        "saved": result.saved.to_dict() if result.saved else None,
        "summary": result.summary.to_dict(),
    }


@router.post("/trip/reset")
async def reset_trip() -> dict:
    from tracker.main import get_engine

    get_engine().reset()
    return _trip_view()


@router.get("/trip/path")
async def get_trip_path(simplify: bool = Query(default=False)) -> dict:
    """Current segmented path as [lat, lng] lists, one list per segment."""
    from tracker.main import get_engine

    engine = get_engine()
    if simplify:
        segments = [[list(c) for c in seg] for seg in engine.render_path()]
    else:
        segments = [[[p.lat, p.lng] for p in seg.points] for seg in engine.segments]
    return {"state": engine.state.value, "segments": segments}


@router.post("/positions")
async def receive_positions(request: Request) -> Response:
    """Receive raw fixes from the position source.

    Accepts a single fix object or {"fixes": [...]} for a burst.
    """
    from tracker.main import get_engine

    body_bytes = await request.body()
    try:
        body = json.loads(body_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(content={"accepted": 0, "error": "invalid JSON"}, status_code=400)

    raw_fixes = body.get("fixes") if isinstance(body, dict) and "fixes" in body else [body]
    if not isinstance(raw_fixes, list):
        return JSONResponse(content={"accepted": 0, "error": "fixes must be a list"}, status_code=422)

    try:
        fixes = [_parse_fix(f) for f in raw_fixes]
    except FixError as e:
        return JSONResponse(content={"accepted": 0, "error": str(e)}, status_code=422)

    engine = get_engine()
    for fix in fixes:
        engine.on_position(**fix)

    return JSONResponse(content={
        "accepted": len(fixes),
        "state": engine.state.value,
        "distance_km": engine.distance_km,
    })


@router.get("/history")
async def list_history() -> dict:
    from tracker.main import get_engine

    trips = get_engine().history.list_trips()
    return {
        "trips": [
            {
                "id": t.id,
                "started_at_ms": t.started_at_ms,
                "duration_ms": t.duration_ms,
                "distance_km": t.distance_km,
                "segments": len(t.segments),
                "points": t.point_count,
            }
            for t in trips
        ],
        "total": len(trips),
    }


@router.get("/history/{trip_id}/gpx")
async def get_history_gpx(trip_id: str) -> Response:
    from tracker.main import get_engine

    trip = get_engine().history.get(trip_id)
    if trip is None:
        return JSONResponse(content={"error": "trip not found"}, status_code=404)
    return Response(
        content=export_gpx(trip),
        media_type="application/gpx+xml",
        headers={"content-disposition": f'attachment; filename="{trip.id}.gpx"'},
    )


@router.delete("/history/{trip_id}")
async def delete_history_trip(trip_id: str) -> JSONResponse:
    from tracker.main import get_engine

    if not get_engine().history.delete(trip_id):
        return JSONResponse(content={"deleted": False}, status_code=404)
    return JSONResponse(content={"deleted": True})


@router.delete("/history")
async def clear_history() -> JSONResponse:
    from tracker.main import get_engine

    get_engine().history.clear()
    return JSONResponse(content={"cleared": True})
