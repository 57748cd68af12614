import os
import sys
from pathlib import Path


# Ensure `backend/` is on sys.path so tests can import local modules
# like `stores.*`, `geo.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

# Tests that exercise telemetry opt in explicitly.
os.environ.setdefault("STORE_EXPLORER_TELEMETRY", "0")
