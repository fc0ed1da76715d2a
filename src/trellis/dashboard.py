"""HTTP API for trellis -- a thin FastAPI shell over the service layer.

Single-workspace server. A module-level ``_db`` is set at startup (or by
test fixtures) and injected via ``Depends(_get_db)``. Every handler resolves
the caller from the session cookie or an ``Authorization: Bearer`` header and
hands the resulting ``AuthContext`` to the service layer explicitly.

Domain errors render as ``{"error": {"message", "code", "details"}}`` with
the status each error class maps to.

Usage:
    trellis serve                    # http://localhost:8377
    trellis serve --port 9000        # Custom port
    TRELLIS_DB=/path/trellis.db trellis serve
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from trellis.core import (
    DB_FILENAME,
    DEFAULT_SESSION_COOKIE,
    TrellisDB,
    find_trellis_root,
    read_config,
)
from trellis.logging import setup_logging
from trellis.types.core import TrellisConfig

DEFAULT_PORT = 8377

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level state, set by main() or test fixtures
# ---------------------------------------------------------------------------

_db: TrellisDB | None = None
_config: TrellisConfig = {}


def _get_db() -> TrellisDB:
    """Return the active database connection."""
    from fastapi import HTTPException

    if _db is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return _db


def _session_cookie_name() -> str:
    return os.environ.get("TRELLIS_SESSION_COOKIE", "").strip() or _config.get("session_cookie", DEFAULT_SESSION_COOKIE)


def _session_max_age() -> int:
    if _db is not None:
        return int(_db.session_ttl_hours * 3600)
    return int(_config.get("session_ttl_hours", 72) * 3600)


def create_app() -> Any:
    """Create the FastAPI application with all API routers mounted at ``/api``."""
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    from trellis import __version__
    from trellis.dashboard_routes import projects, session, teams, work_items

    app = FastAPI(title="Trellis", version=__version__, docs_url=None, redoc_url=None)

    for module in (session, projects, teams, work_items):
        app.include_router(module.create_router(), prefix="/api")

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    return app


def _open_db(db_path: str | None) -> tuple[TrellisDB, Path]:
    """Open the store from ``db_path``/``TRELLIS_DB``, else discover ``.trellis/``."""
    global _config

    explicit = db_path or os.environ.get("TRELLIS_DB", "").strip()
    if explicit:
        path = Path(explicit)
        trellis_dir = path.parent
        _config = read_config(trellis_dir)
    else:
        trellis_dir = find_trellis_root()
        _config = read_config(trellis_dir)
        path = trellis_dir / DB_FILENAME
    db = TrellisDB(
        path,
        session_ttl_hours=int(_config.get("session_ttl_hours", 72)),
        check_same_thread=False,
    )
    db.initialize()
    return db, trellis_dir


def main(port: int = DEFAULT_PORT, *, host: str = "127.0.0.1", db_path: str | None = None) -> None:
    """Start the API server."""
    import uvicorn

    global _db

    _db, trellis_dir = _open_db(db_path)
    setup_logging(trellis_dir, level=_config.get("log_level", "INFO"))
    purged = _db.purge_expired_sessions()
    logger.info("Serving %s on %s:%d (purged %d expired session(s))", _db.db_path, host, port, purged)

    app = create_app()
    print(f"Trellis API: http://{host}:{port}/api")
    uvicorn.run(app, host=host, port=port, log_level="warning")
