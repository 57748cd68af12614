from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def telemetry_path() -> Path:
    # Kept under the repo so sessions can be compared locally.
    return Path(
        os.getenv("STORE_EXPLORER_TELEMETRY_PATH")
        or (_repo_root() / "data" / "telemetry" / "explorer.duckdb")
    )


def telemetry_enabled() -> bool:
    v = (os.getenv("STORE_EXPLORER_TELEMETRY") or "1").strip().lower()
    return v not in {"0", "false", "no", "off"}
