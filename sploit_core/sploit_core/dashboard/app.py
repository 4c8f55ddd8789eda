"""
FastAPI status application.

Serves the read-only daemon snapshot as JSON. The app only holds two
callables, so it can be built in tests without a running daemon.
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI

from ..errors import ConfigError

logger = logging.getLogger('sploit.dashboard')


def create_app(
    status_fn: Callable[[], Dict[str, Any]],
    triggers_fn: Optional[Callable[[], List[Dict[str, Any]]]] = None,
) -> FastAPI:
    """
    Create the status application.

    Args:
        status_fn: Returns the full status snapshot
        triggers_fn: Returns only the trigger list (defaults to status_fn()['triggers'])
    """
    app = FastAPI(
        title="Sploit Status",
        description="Scheduled Metasploit scans and known vulnerabilities",
        version="0.3.0"
    )
    app.state.status_fn = status_fn
    app.state.triggers_fn = triggers_fn or (lambda: status_fn().get("triggers", []))

    from .routes import status
    app.include_router(status.router, prefix="/api", tags=["status"])

    logger.info("Sploit status API created")
    return app


def _split_address(address: str) -> tuple:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigError(f"serve address must be host:port, got {address!r}")
    try:
        return host or "0.0.0.0", int(port)
    except ValueError as e:
        raise ConfigError(f"invalid port in serve address {address!r}") from e


def serve_in_thread(app: FastAPI, address: str) -> uvicorn.Server:
    """Run uvicorn for `app` on a daemon thread; returns the server for shutdown."""
    host, port = _split_address(address)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, name="sploit-status-http", daemon=True)
    thread.start()
    logger.info(f"Started status server on {host}:{port}")
    return server
