# ipsec_agent/server/web.py
"""
Control surface

  GET  /ping         liveness
  POST /v1/reload    full reload of the overlay backend
  GET  /v1/loglevel  current log level
  POST /v1/loglevel  set log level (form field "level")

Example:
  curl -X POST -d "level=debug" localhost:8111/v1/loglevel
"""

import logging
from typing import Protocol

import uvicorn
from fastapi import FastAPI, Form
from fastapi.responses import PlainTextResponse

logger = logging.getLogger('ipsec-agent.server')

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


class Backend(Protocol):
    def reload(self) -> None: ...


def get_log_level() -> str:
    return logging.getLevelName(logging.getLogger().getEffectiveLevel()).lower()


def set_log_level(level: str):
    """Raises ValueError for unknown level names"""
    name = (level or "").strip().lower()
    if name not in LOG_LEVELS:
        raise ValueError(f"not a valid log level: {level!r}")
    logging.getLogger().setLevel(LOG_LEVELS[name])


def create_app(backend: Backend) -> FastAPI:
    app = FastAPI(title="IPSec Agent")

    @app.get("/ping", response_class=PlainTextResponse)
    def ping():
        logger.debug("Received ping request")
        return "OK"

    @app.post("/v1/reload", response_class=PlainTextResponse)
    def reload():
        logger.debug("Received reload request")
        try:
            backend.reload()
        except Exception as e:
            logger.error(f"Failed to reload configuration: {e}")
            return PlainTextResponse(f"Failed to reload configuration: {e}\n", status_code=500)
        return "Reloaded Configuration\n"

    @app.get("/v1/loglevel", response_class=PlainTextResponse)
    def read_loglevel():
        logger.debug("Received loglevel request")
        return f"{get_log_level()}\n"

    @app.post("/v1/loglevel", response_class=PlainTextResponse)
    def write_loglevel(level: str = Form("")):
        logger.debug("Received loglevel request")
        try:
            set_log_level(level)
        except ValueError as e:
            return PlainTextResponse(f"Failed to set loglevel: {e}\n", status_code=500)
        return "OK\n"

    return app


def listen_and_serve(backend: Backend, host: str, port: int):
    """Serve the control surface, blocks until the server stops"""
    app = create_app(backend)
    logger.info(f"Listening on {host}:{port}")
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    server.run()
