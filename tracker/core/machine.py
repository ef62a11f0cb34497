"""Trip state machine: turns raw location fixes into a trip record.

This is the core business logic. It owns the live accumulators (distance,
speed, clock) and the in-progress path, and orchestrates the GPS filter,
the sync buffer and the snapshot store on every incoming fix.

Local mutation is synchronous and authoritative. Network effects run as
detached tasks whose only allowed effects are recording the remote
activity id and feeding the sync buffer; each checks the trip generation
first so a late response cannot touch a newer (or finished) trip.
"""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Callable

import structlog

from tracker.config import FilterConfig, SyncConfig, TripConfig
from tracker.core.clock import TripClock, format_hms
from tracker.core.geo import haversine_m, is_valid_coordinate
from tracker.core.geofilter import FixVerdict, GeoFilter
from tracker.core.heading import HeadingTracker
from tracker.core.models import (
    FinalizeResult,
    FinishPayload,
    NotSynced,
    Pending,
    RemoteLink,
    SavedTrip,
    Synced,
    TrackPoint,
    TripSnapshot,
    TripState,
    TripSummary,
)
from tracker.core.path import SegmentedPath, simplify_epsilon
from tracker.core.signals import Signal
from tracker.core.stats import TrackerStats
from tracker.sync.buffer import SyncBuffer
from tracker.sync.tasks import BackgroundTasks

if TYPE_CHECKING:
    from tracker.core.models import PathSegment
    from tracker.storage.history import TripHistory
    from tracker.storage.snapshot_store import SnapshotStore
    from tracker.sync.base import SyncClient

log = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _clean(value: float | None) -> float | None:
    """Drop missing, non-numeric, non-finite or negative optional readings."""
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v < 0:
        return None
    return v


class TripSignals:
    """Live values the map/UI layer reads or subscribes to."""

    def __init__(self) -> None:
        self.state: Signal[TripState] = Signal("state", TripState.IDLE)
        self.distance_km: Signal[float] = Signal("distance_km", 0.0)
        self.speed_kmh: Signal[float] = Signal("speed_kmh", 0.0)
        self.position: Signal[tuple[float, float] | None] = Signal("position", None)
        self.heading_deg: Signal[float] = Signal("heading_deg", 0.0)


class TripStateMachine:
    """Idle -> Recording <-> Paused -> Idle, driven by user calls and fixes."""

    def __init__(
        self,
        snapshots: SnapshotStore,
        history: TripHistory,
        *,
        filter_config: FilterConfig | None = None,
        trip_config: TripConfig | None = None,
        sync_config: SyncConfig | None = None,
        remote: SyncClient | None = None,
        stats: TrackerStats | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._cfg = trip_config or TripConfig()
        self._sync_cfg = sync_config or SyncConfig()
        self._filter = GeoFilter(filter_config or FilterConfig())
        self._clock = TripClock()
        self._path = SegmentedPath(max_points=self._cfg.max_path_points)
        self._heading = HeadingTracker()
        self._snapshots = snapshots
        self._history = history
        self._remote = remote
        self._stats = stats or TrackerStats()
        self._now = clock or _now_ms
        self._tasks = BackgroundTasks()

        self.signals = TripSignals()

        self._link: RemoteLink = NotSynced()
        self._sync: SyncBuffer | None = None
        self._generation = 0

        self._speed_smooth_kmh = 0.0
        self._idle_since_ms: int | None = None
        self._moving_since_ms: int | None = None
        self._last_move_ms: int | None = None
        self._pause_anchor: TrackPoint | None = None
        self._resume_anchor: TrackPoint | None = None
        self._paused_fix: TrackPoint | None = None
        self._last_accuracy: float | None = None
        self._last_persist_ms = 0

    # ======= Read-only state =======

    @property
    def state(self) -> TripState:
        return self.signals.state.value

    @property
    def distance_km(self) -> float:
        return self.signals.distance_km.value

    @property
    def speed_kmh(self) -> float:
        return self.signals.speed_kmh.value

    @property
    def position(self) -> tuple[float, float] | None:
        return self.signals.position.value

    @property
    def heading_deg(self) -> float:
        return self.signals.heading_deg.value

    @property
    def remote_link(self) -> RemoteLink:
        return self._link

    @property
    def segments(self) -> tuple[PathSegment, ...]:
        return self._path.segments

    @property
    def history(self) -> TripHistory:
        return self._history

    @property
    def stats(self) -> TrackerStats:
        return self._stats

    @property
    def sync_buffer(self) -> SyncBuffer | None:
        return self._sync

    @property
    def clock(self) -> TripClock:
        return self._clock

    @property
    def active_snapshot(self) -> TripSnapshot:
        link = self._link
        return TripSnapshot(
            state=self.state,
            distance_km=self.distance_km,
            speed_kmh=self.speed_kmh,
            started_at_ms=self._clock.started_at_ms,
            paused_accum_ms=self._clock.paused_accum_ms,
            pause_started_at_ms=self._clock.pause_started_at_ms,
            segments=self._path.copy_segments(),
            remote_activity_id=link.activity_id if isinstance(link, Synced) else None,
        )

    def get_summary(self) -> TripSummary:
        return self._summary_at(self._now(), paused=self.state is TripState.PAUSED)

    def _summary_at(self, now_ms: int, paused: bool) -> TripSummary:
        if self.state is TripState.IDLE:
            return TripSummary(duration_ms=0, distance_km=0.0, avg_speed_kmh=0.0)
        duration_ms = self._clock.elapsed_ms(now_ms, paused)
        distance_km = self.distance_km
        hours = duration_ms / 3_600_000
        avg = distance_km / hours if hours > 0 else 0.0
        return TripSummary(duration_ms=duration_ms, distance_km=distance_km, avg_speed_kmh=avg)

    def time_string(self) -> str:
        return format_hms(self.get_summary().duration_ms)

    def render_path(self) -> list[list[tuple[float, float]]]:
        """Simplified segments for drawing; stored points are untouched."""
        return self._path.simplify(simplify_epsilon(self.speed_kmh, self._last_accuracy))

    # ======= Lifecycle =======

    def start(self) -> None:
        if self.state is not TripState.IDLE:
            log.debug("start_ignored", state=self.state.value)
            return

        now = self._now()
        self._generation += 1
        self._filter.reset()
        self._heading.reset()
        self._path.clear()
        self._clock.start(now)
        self._clear_trackers()
        self._speed_smooth_kmh = 0.0
        self.signals.distance_km.set(0.0)
        self.signals.speed_kmh.set(0.0)
        self.signals.position.set(None)
        self._drop_sync()
        self.signals.state.set(TripState.RECORDING)
        self._persist(force=True)
        self._stats.record_trip_started()
        log.info("trip_started", started_at_ms=now)

        if self._remote is not None:
            buffer = self._new_sync_buffer(self._remote)
            self._sync = buffer
            task = self._tasks.spawn(self._open_remote(self._generation, buffer), name="remote_start")
            if task is not None:
                self._link = Pending()

    def pause(self, manual: bool = True) -> None:
        if self.state is not TripState.RECORDING:
            log.debug("pause_ignored", state=self.state.value)
            return

        now = self._now()
        self._clock.pause(now)
        self._pause_anchor = self._path.last_point()
        self._idle_since_ms = None
        self._moving_since_ms = None
        self._paused_fix = None
        self.signals.state.set(TripState.PAUSED)
        self._persist(force=True)
        if not manual:
            self._stats.record_auto_pause()
        log.info("trip_paused", manual=manual, distance_km=round(self.distance_km, 3))

        link = self._link
        if isinstance(link, Synced) and self._sync is not None:
            self._tasks.spawn(self._remote_pause(link.activity_id, self._sync), name="remote_pause")

    def resume(self, manual: bool = True) -> None:
        if self.state is not TripState.PAUSED:
            log.debug("resume_ignored", state=self.state.value)
            return

        now = self._now()
        self._clock.resume(now)
        self._resume_anchor = self._pause_anchor
        self._pause_anchor = None
        self._idle_since_ms = None
        self._moving_since_ms = None
        self._paused_fix = None
        # Time spent paused never counts as a stop gap.
        self._last_move_ms = None
        self.signals.state.set(TripState.RECORDING)
        self._persist(force=True)
        if not manual:
            self._stats.record_auto_resume()
        log.info("trip_resumed", manual=manual, paused_accum_ms=self._clock.paused_accum_ms)

        link = self._link
        if isinstance(link, Synced):
            self._tasks.spawn(self._remote_resume(link.activity_id), name="remote_resume")

    def finalize(self, save: bool) -> FinalizeResult:
        if self.state is TripState.IDLE:
            log.debug("finalize_ignored", state=self.state.value)
            return FinalizeResult(saved=None, summary=self._summary_at(self._now(), paused=False))

        now = self._now()
        if self.state is TripState.PAUSED:
            # Settle the open pause without touching listeners or the backend.
            self._clock.resume(now)
        summary = self._summary_at(now, paused=False)

        saved: SavedTrip | None = None
        if save:
            saved = SavedTrip(
                id=f"trk_{self._clock.started_at_ms}",
                started_at_ms=self._clock.started_at_ms,
                duration_ms=summary.duration_ms,
                distance_km=summary.distance_km,
                segments=tuple(self._path.copy_segments()),
            )
            try:
                self._history.add(saved)
            except OSError:
                log.error("history_write_failed", trip_id=saved.id, exc_info=True)

        link = self._link
        if isinstance(link, Synced) and self._sync is not None:
            buffer = self._sync
            buffer.stop_timer()
            # The finishing task owns this buffer from now on.
            self._sync = None
            payload = FinishPayload(
                elapsed_ms=summary.duration_ms,
                distance_m=summary.distance_km * 1000,
                avg_speed_kmh=summary.avg_speed_kmh,
                save=save,
            )
            self._tasks.spawn(self._remote_finish(link.activity_id, buffer, payload), name="remote_finish")

        self._stats.record_trip_finished(save)
        log.info("trip_finalized", save=save, duration_ms=summary.duration_ms,
                 distance_km=round(summary.distance_km, 3),
                 avg_speed_kmh=round(summary.avg_speed_kmh, 2))
        self.reset()
        return FinalizeResult(saved=saved, summary=summary)

    def reset(self) -> None:
        """Hard-clear everything; the persisted snapshot goes too."""
        self._generation += 1
        try:
            self._snapshots.clear()
        except OSError:
            log.error("snapshot_clear_failed", exc_info=True)
        self._drop_sync()
        self._clock.clear()
        self._path.clear()
        self._filter.reset()
        self._heading.reset()
        self._clear_trackers()
        self._speed_smooth_kmh = 0.0
        self._last_persist_ms = 0
        self.signals.distance_km.set(0.0)
        self.signals.speed_kmh.set(0.0)
        self.signals.position.set(None)
        self.signals.heading_deg.set(0.0)
        self.signals.state.set(TripState.IDLE)

    def restore_if_any(self) -> bool:
        """Reload the persisted trip, if one was in progress. Returns True if restored."""
        if self.state is not TripState.IDLE:
            log.debug("restore_ignored", state=self.state.value)
            return False

        snap = self._snapshots.load()
        if snap is None:
            return False
        if snap.state is TripState.IDLE:
            self._snapshots.clear()
            return False

        now = self._now()
        self._generation += 1
        self._filter.reset()
        self._heading.reset()
        self._clear_trackers()

        pause_started = None
        if snap.state is TripState.PAUSED:
            pause_started = snap.pause_started_at_ms if snap.pause_started_at_ms is not None else now
        self._clock.restore(snap.started_at_ms, snap.paused_accum_ms, pause_started)
        self._path.load(snap.segments)
        if snap.state is TripState.PAUSED:
            self._pause_anchor = self._path.last_point()

        self._speed_smooth_kmh = snap.speed_kmh
        self.signals.distance_km.set(snap.distance_km)
        self.signals.speed_kmh.set(snap.speed_kmh)

        self._drop_sync()
        if snap.remote_activity_id is not None and self._remote is not None:
            buffer = self._new_sync_buffer(self._remote)
            buffer.bind(snap.remote_activity_id)
            buffer.start_timer()
            self._sync = buffer
            self._link = Synced(snap.remote_activity_id)

        self.signals.state.set(snap.state)
        self._last_persist_ms = now
        log.info("trip_restored", state=snap.state.value, points=len(self._path),
                 distance_km=round(snap.distance_km, 3),
                 remote_activity_id=snap.remote_activity_id)
        return True

    async def drain_background(self) -> None:
        """Wait for in-flight remote calls (start, pause, resume, finish)."""
        await self._tasks.drain()

    async def aclose(self) -> None:
        """Tear down: stop the sync timer, persist, and let remote calls finish."""
        if self._sync is not None:
            self._sync.stop_timer()
        if self.state is not TripState.IDLE:
            self._persist(force=True)
        await self._tasks.drain()

    # ======= Position ingestion =======

    def on_position(
        self,
        lat: float,
        lng: float,
        timestamp_ms: int | None = None,
        speed_mps: float | None = None,
        accuracy_m: float | None = None,
        heading_deg: float | None = None,
    ) -> None:
        """Feed one raw fix. Never raises: a bad fix must not stop the trip."""
        try:
            self._ingest(lat, lng, timestamp_ms, speed_mps, accuracy_m, heading_deg)
        except Exception:
            log.error("position_ingest_failed", lat=lat, lng=lng, exc_info=True)

    def _ingest(
        self,
        lat: float,
        lng: float,
        timestamp_ms: int | None,
        speed_mps: float | None,
        accuracy_m: float | None,
        heading_deg: float | None,
    ) -> None:
        if self.state is TripState.IDLE:
            return

        lat, lng = float(lat), float(lng)
        if not is_valid_coordinate(lat, lng):
            self._stats.record_dropped()
            log.debug("fix_dropped", reason="invalid_coordinates")
            return

        ts = int(timestamp_ms) if timestamp_ms is not None else self._now()
        point = TrackPoint(
            lat=lat,
            lng=lng,
            timestamp_ms=ts,
            speed_mps=_clean(speed_mps),
            accuracy_m=_clean(accuracy_m),
        )

        if self.state is TripState.PAUSED:
            if not self._check_auto_resume(point):
                return

        last = self._path.last_point()
        if (
            last is not None
            and last.timestamp_ms == ts
            and last.lat == lat
            and last.lng == lng
        ):
            self._stats.record_dropped()
            log.debug("fix_dropped", reason="duplicate")
            return

        self._update_display(point, heading_deg)
        cfg = self._cfg

        moved_m = 0.0
        reported_kmh = point.speed_mps * 3.6 if point.speed_mps is not None else None
        derived_kmh: float | None = None
        if last is not None:
            moved_m = haversine_m(last.lat, last.lng, lat, lng)
            dt_s = max(cfg.min_speed_dt_s, (ts - last.timestamp_ms) / 1000)
            derived_kmh = moved_m / dt_s * 3.6
        speed_kmh = reported_kmh if reported_kmh is not None else derived_kmh

        # Segment decision comes first; the fix lands in whatever segment is
        # current afterwards. A fix that opens a segment never adds distance.
        verdict: FixVerdict | None = None
        opens_segment = last is None
        if last is not None and self._resume_anchor is not None:
            anchor = self._resume_anchor
            self._resume_anchor = None
            if haversine_m(anchor.lat, anchor.lng, lat, lng) > cfg.pause_gap_m:
                self._break_segment("pause_gap")
                opens_segment = True
        if (
            not opens_segment
            and self._last_move_ms is not None
            and ts - self._last_move_ms > cfg.stop_gap_s * 1000
        ):
            self._break_segment("stop_gap")
            opens_segment = True
        if not opens_segment:
            verdict = self._filter.classify(moved_m, speed_kmh, point.accuracy_m)
            if verdict is FixVerdict.TELEPORT:
                self._break_segment("teleport")
                opens_segment = True

        self._path.append_point(point)

        if opens_segment:
            self._last_move_ms = ts
            self._idle_since_ms = None
            self._stats.record_fix(verdict.value if verdict is not None else "segment_start")
        elif verdict is FixVerdict.ACCEPT:
            self._accept(ts, moved_m, reported_kmh, derived_kmh)
            self._stats.record_fix(verdict.value)
        else:
            assert verdict is not None
            self._stats.record_fix(verdict.value)
            self._track_idle(ts, verdict, reported_kmh, derived_kmh)

        if isinstance(self._link, Synced) and self._sync is not None:
            self._sync.enqueue(point)

        self._persist(force=False)

    def _update_display(self, point: TrackPoint, heading_deg: float | None) -> None:
        lat, lng = self._filter.smooth(point.lat, point.lng, point.accuracy_m)
        self.signals.position.set((lat, lng))
        self._last_accuracy = point.accuracy_m
        speed_for_heading = point.speed_mps * 3.6 if point.speed_mps is not None else self.speed_kmh
        self.signals.heading_deg.set(
            self._heading.update(lat, lng, speed_for_heading, _finite_or_none(heading_deg))
        )

    def _accept(
        self,
        ts: int,
        moved_m: float,
        reported_kmh: float | None,
        derived_kmh: float | None,
    ) -> None:
        self.signals.distance_km.set(self.distance_km + moved_m / 1000)
        instant = reported_kmh if reported_kmh is not None else derived_kmh
        if instant is not None:
            self._blend_speed(instant)
        self._idle_since_ms = None
        self._last_move_ms = ts

    def _track_idle(
        self,
        ts: int,
        verdict: FixVerdict,
        reported_kmh: float | None,
        derived_kmh: float | None,
    ) -> None:
        if self._idle_since_ms is None:
            self._idle_since_ms = ts

        # Uncounted movement still tells us how fast we are (not) going.
        if reported_kmh is not None:
            effective = reported_kmh
            self._blend_speed(effective)
        elif derived_kmh is not None and verdict in (FixVerdict.JITTER, FixVerdict.DRIFT):
            effective = derived_kmh
            self._blend_speed(effective)
        else:
            effective = self.speed_kmh

        cfg = self._cfg
        if (
            effective < cfg.auto_pause_speed_kmh
            and ts - self._idle_since_ms > cfg.auto_pause_after_s * 1000
            and self.state is TripState.RECORDING
        ):
            log.info("auto_pause_triggered", idle_ms=ts - self._idle_since_ms,
                     speed_kmh=round(effective, 2))
            self.pause(manual=False)

    def _check_auto_resume(self, point: TrackPoint) -> bool:
        """While paused: True once sustained movement has auto-resumed the trip."""
        prev = self._paused_fix
        self._paused_fix = point

        effective: float | None = None
        if point.speed_mps is not None:
            effective = point.speed_mps * 3.6
        elif prev is not None:
            moved_m = haversine_m(prev.lat, prev.lng, point.lat, point.lng)
            accuracy_m = point.accuracy_m
            too_vague = accuracy_m is not None and accuracy_m > self._filter.config.max_accuracy_m
            if moved_m < self._filter.min_move_for(accuracy_m) or too_vague:
                effective = 0.0
            else:
                dt_s = max(self._cfg.min_speed_dt_s, (point.timestamp_ms - prev.timestamp_ms) / 1000)
                effective = moved_m / dt_s * 3.6
        if effective is None:
            return False

        cfg = self._cfg
        if effective < cfg.auto_resume_speed_kmh:
            self._moving_since_ms = None
            return False
        if self._moving_since_ms is None:
            self._moving_since_ms = point.timestamp_ms
        if point.timestamp_ms - self._moving_since_ms < cfg.auto_resume_after_s * 1000:
            return False

        log.info("auto_resume_triggered", speed_kmh=round(effective, 2))
        self.resume(manual=False)
        return self.state is TripState.RECORDING

    def _blend_speed(self, instant_kmh: float) -> None:
        a = self._cfg.speed_alpha
        self._speed_smooth_kmh = a * max(0.0, instant_kmh) + (1 - a) * self._speed_smooth_kmh
        self.signals.speed_kmh.set(self._speed_smooth_kmh)

    def _break_segment(self, reason: str) -> None:
        # Never stack empty segments.
        if not self._path.current.points:
            return
        self._path.start_new_segment()
        self._stats.record_segment()
        log.info("segment_started", reason=reason, segments=len(self._path.segments))

    def _clear_trackers(self) -> None:
        self._idle_since_ms = None
        self._moving_since_ms = None
        self._last_move_ms = None
        self._pause_anchor = None
        self._resume_anchor = None
        self._paused_fix = None
        self._last_accuracy = None

    # ======= Persistence =======

    def _persist(self, force: bool) -> None:
        now = self._now()
        if not force and now - self._last_persist_ms < self._cfg.persist_every_s * 1000:
            return
        try:
            self._snapshots.save(self.active_snapshot)
            self._stats.record_snapshot(True)
        except (OSError, ValueError):
            log.error("snapshot_write_failed", exc_info=True)
            self._stats.record_snapshot(False)
        self._last_persist_ms = now

    # ======= Remote sync =======

    def _new_sync_buffer(self, remote: SyncClient) -> SyncBuffer:
        return SyncBuffer(
            remote,
            self._tasks,
            interval_s=self._sync_cfg.batch_interval_s,
            batch_size=self._sync_cfg.batch_size,
            stats=self._stats,
        )

    def _drop_sync(self) -> None:
        if self._sync is not None:
            self._sync.unbind()
            self._sync = None
        self._link = NotSynced()

    async def _open_remote(self, generation: int, buffer: SyncBuffer) -> None:
        assert self._remote is not None
        try:
            activity_id = await self._remote.start_activity()
        except Exception:
            log.warning("remote_start_failed", exc_info=True)
            self._stats.record_remote_error()
            activity_id = None

        if generation != self._generation or self.state is TripState.IDLE:
            log.info("remote_start_stale", activity_id=activity_id)
            return
        if activity_id is None:
            self._link = NotSynced()
            log.info("trip_local_only")
            return

        self._link = Synced(activity_id)
        buffer.bind(activity_id)
        buffer.start_timer()
        self._persist(force=True)
        log.info("remote_activity_bound", activity_id=activity_id)

    async def _remote_pause(self, activity_id: int, buffer: SyncBuffer) -> None:
        assert self._remote is not None
        try:
            await buffer.flush(force=True)
            await self._remote.pause_activity(activity_id)
        except Exception:
            log.warning("remote_pause_failed", activity_id=activity_id, exc_info=True)
            self._stats.record_remote_error()

    async def _remote_resume(self, activity_id: int) -> None:
        assert self._remote is not None
        try:
            await self._remote.resume_activity(activity_id)
        except Exception:
            log.warning("remote_resume_failed", activity_id=activity_id, exc_info=True)
            self._stats.record_remote_error()

    async def _remote_finish(self, activity_id: int, buffer: SyncBuffer, payload: FinishPayload) -> None:
        assert self._remote is not None
        try:
            await buffer.flush(force=True)
            await self._remote.finish_activity(activity_id, payload)
            log.info("remote_activity_finished", activity_id=activity_id, save=payload.save)
        except Exception:
            log.warning("remote_finish_failed", activity_id=activity_id, exc_info=True)
            self._stats.record_remote_error()


def _finite_or_none(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None
