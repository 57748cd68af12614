from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from telemetry.sql import (
    CREATE_EVENTS_TABLE_SQL,
    INSERT_EVENTS_SQL,
    SLOWEST_SQL_TEMPLATE,
    SUMMARY_SQL_TEMPLATE,
)

log = logging.getLogger(__name__)

_FLUSH_EVERY_S = 0.5
_FLUSH_BATCH = 250


def _safe_float(v) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class TelemetryStore:
    """
    Append-only DuckDB log of explorer events (render passes, filters, focus,
    exports). Writes go through a single background thread.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _q: "queue.Queue[dict[str, Any]]" = field(default_factory=queue.Queue, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _worker: threading.Thread | None = field(default=None, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_EVENTS_TABLE_SQL)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop.clear()
        self._worker = threading.Thread(
            target=self._run, name="telemetry-writer", daemon=True
        )
        self._worker.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        """
        Stop the writer thread; queued events are flushed before it exits.
        """
        self._stop.set()
        w = self._worker
        if w is not None and w.is_alive():
            w.join(timeout=timeout_s)
        self._worker = None

    def record(
        self,
        *,
        event: str,
        generation: int | None,
        view_zoom: float | None,
        bbox: dict[str, float] | None,
        stats: dict[str, Any],
    ) -> None:
        # Non-blocking: enqueue and return.
        self.start()
        bbox = bbox or {}
        try:
            self._q.put_nowait(
                {
                    "ts_ms": int(time.time() * 1000),
                    "event": str(event),
                    "generation": None if generation is None else int(generation),
                    "view_zoom": _safe_float(view_zoom),
                    "bbox_min_lon": _safe_float(bbox.get("minLon")),
                    "bbox_min_lat": _safe_float(bbox.get("minLat")),
                    "bbox_max_lon": _safe_float(bbox.get("maxLon")),
                    "bbox_max_lat": _safe_float(bbox.get("maxLat")),
                    "stats_json": json.dumps(stats, ensure_ascii=False),
                }
            )
        except queue.Full:
            log.debug("Telemetry queue full; dropping %s event", event)

    def flush(self, *, timeout_s: float = 2.0) -> None:
        """
        Wait until queued events are written (used by tests).
        """
        if self._worker is None:
            return
        deadline = time.time() + timeout_s
        while time.time() < deadline:
            if self._q.unfinished_tasks == 0:
                break
            time.sleep(0.01)
        # The writer flushes on a timer; give it one tick.
        time.sleep(_FLUSH_EVERY_S + 0.05)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        """
        Run a read query on the writer's connection.

        DuckDB holds a file lock while this process writes, so reads go through
        the API instead of a second connection.
        """
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(
        self,
        *,
        event: str | None = None,
        since_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        where = []
        params: list[Any] = []
        if event:
            where.append("event = ?")
            params.append(event)
        if since_ms is not None:
            where.append("ts_ms >= ?")
            params.append(int(since_ms))

        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)

        out: list[dict[str, Any]] = []
        for event_v, n, avg_ms, p50, p95, avg_created, avg_destroyed in rows:
            out.append(
                {
                    "event": event_v,
                    "n": int(n),
                    "avgTotalMs": _safe_float(avg_ms),
                    "p50TotalMs": _safe_float(p50),
                    "p95TotalMs": _safe_float(p95),
                    "avgCreated": _safe_float(avg_created),
                    "avgDestroyed": _safe_float(avg_destroyed),
                }
            )
        return out

    def slowest(
        self,
        *,
        event: str | None = None,
        limit: int = 25,
    ) -> list[dict[str, Any]]:
        where = ["json_extract(stats_json, '$.timingsMs.total') IS NOT NULL"]
        params: list[Any] = []
        if event:
            where.append("event = ?")
            params.append(event)
        params.append(int(max(1, min(200, limit))))

        rows = self.query(
            SLOWEST_SQL_TEMPLATE.format(where_sql=" AND ".join(where)),
            params,
        )
        return [
            {
                "tsMs": int(ts_ms),
                "event": event_v,
                "generation": None if generation is None else int(generation),
                "totalMs": _safe_float(total_ms),
                "liveMarkers": None if live is None else int(live),
                "viewZoom": _safe_float(view_zoom),
            }
            for ts_ms, event_v, generation, total_ms, live, view_zoom in rows
        ]

    def reset(self) -> None:
        # Stop the writer first so it cannot touch a closed connection.
        self.stop(timeout_s=2.0)
        with self._lock:
            self.conn.close()
            self.path.unlink(missing_ok=True)

    def _run(self) -> None:
        self.ensure_schema()
        batch: list[dict[str, Any]] = []
        last_flush = time.time()

        def flush_batch() -> None:
            nonlocal batch
            if not batch:
                return
            with self._lock:
                self.conn.executemany(
                    INSERT_EVENTS_SQL,
                    [
                        (
                            e["ts_ms"],
                            e["event"],
                            e["generation"],
                            e["view_zoom"],
                            e["bbox_min_lon"],
                            e["bbox_min_lat"],
                            e["bbox_max_lon"],
                            e["bbox_max_lat"],
                            e["stats_json"],
                        )
                        for e in batch
                    ],
                )
                self.conn.execute("CHECKPOINT;")
            batch = []

        while not self._stop.is_set():
            try:
                e = self._q.get(timeout=0.1)
            except queue.Empty:
                e = None

            if e is not None:
                batch.append(e)
                self._q.task_done()

            now = time.time()
            if len(batch) >= _FLUSH_BATCH or (
                batch and (now - last_flush) >= _FLUSH_EVERY_S
            ):
                flush_batch()
                last_flush = now

        # Drain what is left.
        while True:
            try:
                e = self._q.get_nowait()
            except queue.Empty:
                break
            batch.append(e)
            self._q.task_done()
        flush_batch()
