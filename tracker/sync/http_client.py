"""HTTP implementation of SyncClient, backed by httpx.

Endpoints (relative to ``api_url``)::

    POST /api/v1/activities/start              -> {"id": int, "started_at": str}
    POST /api/v1/activities/{id}/points/batch  body: [PointIn, ...]
    POST /api/v1/activities/{id}/pause
    POST /api/v1/activities/{id}/resume
    POST /api/v1/activities/{id}/finish        body: FinishIn
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

if TYPE_CHECKING:
    from tracker.core.models import FinishPayload, TrackPoint

log = structlog.get_logger()


def point_to_wire(point: TrackPoint) -> dict:
    data: dict = {"ts": point.timestamp_ms, "lat": point.lat, "lng": point.lng}
    if point.accuracy_m is not None:
        data["accuracy_m"] = point.accuracy_m
    if point.speed_mps is not None:
        data["speed_mps"] = point.speed_mps
    return data


class HttpSyncClient:
    """SyncClient talking to the activities REST API.

    Without an API URL or a token every call is a no-op and
    ``start_activity`` returns None, which keeps trips local-only.
    """

    def __init__(
        self,
        api_url: str,
        token: str = "",
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._token = token
        self._client: httpx.AsyncClient | None = None
        if self._api_url:
            self._client = httpx.AsyncClient(
                base_url=f"{self._api_url}/api/v1/activities",
                timeout=timeout_s,
                transport=transport,
            )

    def _can_call(self) -> bool:
        return self._client is not None and bool(self._token)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def _post(self, path: str, json: object = None) -> httpx.Response:
        assert self._client is not None
        resp = await self._client.post(path, json=json if json is not None else {},
                                       headers=self._headers())
        resp.raise_for_status()
        return resp

    async def start_activity(self) -> int | None:
        if not self._can_call():
            return None
        try:
            resp = await self._post("/start")
            return int(resp.json()["id"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError):
            log.warning("remote_start_failed", exc_info=True)
            return None

    async def push_point_batch(self, activity_id: int, points: list[TrackPoint]) -> None:
        if not self._can_call() or not points:
            return
        await self._post(f"/{activity_id}/points/batch", [point_to_wire(p) for p in points])

    async def pause_activity(self, activity_id: int) -> None:
        if not self._can_call():
            return
        await self._post(f"/{activity_id}/pause")

    async def resume_activity(self, activity_id: int) -> None:
        if not self._can_call():
            return
        await self._post(f"/{activity_id}/resume")

    async def finish_activity(self, activity_id: int, payload: FinishPayload) -> None:
        if not self._can_call():
            return
        await self._post(f"/{activity_id}/finish", payload.to_dict())

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
