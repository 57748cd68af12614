from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml

from settings.types import ExplorerSettings


def _repo_root() -> Path:
    # .../backend/settings/registry.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def config_path() -> Path:
    return Path(
        os.getenv("STORE_EXPLORER_CONFIG") or (_repo_root() / "config" / "explorer.yaml")
    )


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid explorer config root: {path}")
    return data


@lru_cache(maxsize=1)
def get_settings() -> ExplorerSettings:
    path = config_path()
    if not path.exists():
        raise FileNotFoundError(f"Explorer config not found: {path}")
    cfg = ExplorerSettings.model_validate(_load_yaml(path))

    # Environment overrides for deployment-specific values.
    dataset = (os.getenv("STORE_EXPLORER_DATASET") or "").strip()
    if dataset:
        cfg.dataset.path = dataset
    base_url = (os.getenv("STORE_EXPLORER_API_BASE_URL") or "").strip()
    if base_url:
        cfg.nearby.baseUrl = base_url
    return cfg


def resolve_repo_path(repo_relative: str) -> Path:
    p = Path(repo_relative or "")
    if p.is_absolute() and p.exists():
        return p
    # Allow both "data/..." and "/data/..." inputs (normalize to repo-relative).
    rel = (repo_relative or "").lstrip("/")
    return _repo_root() / rel


def dataset_path() -> Path:
    return resolve_repo_path(get_settings().dataset.path)


def clear_settings_cache() -> None:
    """
    Clear the in-memory settings cache.

    Useful during development and in tests: YAML/env changes are otherwise not
    picked up until the process restarts.
    """
    get_settings.cache_clear()
