"""CLI command for running the HTTP API."""

from __future__ import annotations

import click


@click.command()
@click.option("--port", default=8377, type=int, help="Server port (default 8377)")
@click.option("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
@click.option("--db", "db_path", default=None, help="Database file (default: discovered .trellis/trellis.db)")
def serve(port: int, host: str, db_path: str | None) -> None:
    """Serve the HTTP API with uvicorn."""
    from trellis.dashboard import main as dashboard_main

    dashboard_main(port=port, host=host, db_path=db_path)
