from __future__ import annotations

import logging
from pathlib import Path

from stores.parser import parse_stores
from stores.types import StoreRecord

log = logging.getLogger(__name__)


class DatasetNotFoundError(FileNotFoundError):
    pass


def load_stores(path: Path) -> list[StoreRecord]:
    """
    Read and parse a store dataset from disk.

    Row-level defects are dropped by the parser; only a missing file is an error.
    """
    if not path.exists():
        raise DatasetNotFoundError(f"Store dataset not found: {path}")
    text = path.read_text(encoding="utf-8-sig")
    records = parse_stores(text)
    log.info("Loaded %d stores from %s", len(records), path)
    return records
