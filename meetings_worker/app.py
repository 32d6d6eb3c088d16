from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import load_settings
from .db import MEETINGS_KEY, initialize_db, kv_get, resolve_db_path
from .errors import install_error_handlers
from .logging import RequestContextMiddleware, setup_logging
from .routers import aggregate_router, meetings_router
from .services.coerce import ensure_array
from .services.normalize import Meeting
from .state import State


def _load_env_file(env_path: Path) -> None:
    """Minimal .env loader: KEY=VALUE lines into os.environ if not set.
    - Ignores comments and blank lines
    - Strips surrounding quotes
    - Supports optional 'export ' prefix
    """
    if not env_path.exists():
        return
    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.lower().startswith("export "):
            line = line[7:].lstrip()
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        os.environ.setdefault(k.strip(), v.strip().strip('"').strip("'"))


def _restore_snapshot(state: State) -> None:
    log = logging.getLogger("app")
    items = []
    for doc in ensure_array(kv_get(MEETINGS_KEY, default=[], db_path=state.db_path)):
        try:
            items.append(Meeting.from_dict(doc))
        except (KeyError, TypeError) as e:
            log.warning(f"skipping malformed snapshot record: {e}")
    state.meetings.items = items
    state.meetings.phase = "merged" if items else "idle"
    log.info(f"restored {len(items)} meetings from snapshot")


def create_app() -> FastAPI:
    _load_env_file(Path.cwd() / ".env")

    settings = load_settings()
    setup_logging()

    app = FastAPI(title="Meetings Worker", version=__version__)

    # Attach config/state
    app.state.settings = settings
    state = State(db_path=resolve_db_path(settings.db_path or None))
    app.state.state = state

    try:
        initialize_db(state.db_path)
        _restore_snapshot(state)
    except Exception as e:
        logging.getLogger("app").warning(f"snapshot store unavailable: {e}")

    # CORS
    allow = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)

    # Versioned API
    app.include_router(meetings_router, prefix="/v1")
    app.include_router(aggregate_router, prefix="/v1")

    @app.get("/health")
    def health():  # pragma: no cover - trivial
        return {"status": "ok"}

    return app


# Convenience for `uvicorn meetings_worker.app:app`
app = create_app()
