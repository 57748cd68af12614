from __future__ import annotations

CREATE_EVENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS events (
  ts_ms BIGINT,
  event TEXT,
  generation BIGINT,
  view_zoom DOUBLE,
  bbox_min_lon DOUBLE,
  bbox_min_lat DOUBLE,
  bbox_max_lon DOUBLE,
  bbox_max_lat DOUBLE,
  stats_json TEXT
);
"""

SUMMARY_SQL_TEMPLATE = """
SELECT
  event,
  COUNT(*) AS n,
  AVG(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE)) AS avg_total_ms,
  quantile_cont(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE), 0.50) AS p50_total_ms,
  quantile_cont(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE), 0.95) AS p95_total_ms,
  AVG(try_cast(json_extract(stats_json, '$.markers.created') AS DOUBLE)) AS avg_created,
  AVG(try_cast(json_extract(stats_json, '$.markers.destroyed') AS DOUBLE)) AS avg_destroyed
FROM events
{where_sql}
GROUP BY event
ORDER BY event
"""

SLOWEST_SQL_TEMPLATE = """
SELECT
  ts_ms,
  event,
  generation,
  try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE) AS total_ms,
  try_cast(json_extract(stats_json, '$.markers.live') AS BIGINT) AS live_markers,
  view_zoom
FROM events
WHERE {where_sql}
ORDER BY total_ms DESC
LIMIT ?
"""

INSERT_EVENTS_SQL = """
INSERT INTO events
  (ts_ms, event, generation, view_zoom, bbox_min_lon, bbox_min_lat, bbox_max_lon, bbox_max_lat, stats_json)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""
