import os
import tempfile
from pathlib import Path

# The app module builds its state at import time; point the snapshot store
# at a throwaway directory before any test imports it.
_TMP = Path(tempfile.mkdtemp(prefix="meetings-worker-tests-"))
os.environ.setdefault("WORKER_DB_PATH", str(_TMP / "worker.db"))
os.environ.setdefault("WORKER_LOG_LEVEL", "WARNING")
