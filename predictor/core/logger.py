import logging
import os
from typing import Optional

ROOT_NAME = "predictor"

# Third-party loggers and the env var that sets each one's level.
_QUIET_LOGGERS = {
    "sqlalchemy.engine": "SQL_LOG_LEVEL",
    "httpx": "HTTPX_LOG_LEVEL",
}


def _level(env_name: str, default: int) -> int:
    raw = (os.getenv(env_name) or "").strip().upper()
    if not raw:
        return default
    return getattr(logging, raw, default)


def configure_logging(level: Optional[int] = None) -> None:
    level = level if level is not None else _level("LOG_LEVEL", logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # uvicorn and apscheduler install their own handlers; send them through root.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True
        lg.setLevel(level)

    # httpx logs every provider request at INFO.
    for name, env_name in _QUIET_LOGGERS.items():
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True
        lg.setLevel(_level(env_name, logging.WARNING))


configure_logging()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the ``predictor`` namespace, e.g. ``get_logger("jobs.update_results")``."""
    if not name:
        return logging.getLogger(ROOT_NAME)
    if name == ROOT_NAME or name.startswith(ROOT_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_NAME}.{name}")
