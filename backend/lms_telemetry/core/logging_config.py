from __future__ import annotations

import logging
from typing import Iterable

LOG_FORMAT = '[%(levelname)s] %(name)s: %(message)s'

# Transport libraries log every request; the collector posts every flush.
QUIET_LOGGERS: tuple[str, ...] = (
    'httpx',
    'httpcore',
    'uvicorn.access',
)

INGEST_PATHS: tuple[str, ...] = (
    '/analytics/interactions',
    '/analytics/chatbot-interaction',
)


class IngestAccessFilter(logging.Filter):
    """Drops uvicorn access lines for successful event posts; errors still pass."""

    def __init__(self, paths: Iterable[str] = INGEST_PATHS):
        super().__init__()
        self.paths = tuple(paths)

    def filter(self, record: logging.LogRecord) -> bool:
        # uvicorn.access args: (client, method, path, http_version, status)
        args = record.args if isinstance(record.args, tuple) else ()
        if len(args) < 5:
            return True
        method, path, status = args[1], str(args[2]), args[4]
        if method != 'POST' or not isinstance(status, int) or status >= 400:
            return True
        return not any(path.endswith(p) for p in self.paths)


def _level(level_name: str | None) -> int:
    lvl = logging.getLevelName((level_name or 'INFO').upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def configure_logging(level_name: str | None = None) -> None:
    """Set the root level, attach one stream handler and quiet per-request chatter.

    Safe to call more than once (app reloads, tests): handlers and filters
    are only added when missing.
    """
    lvl = _level(level_name)
    root = logging.getLogger()
    root.setLevel(lvl)
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logger = logging.getLogger(name)
        if logger.level < logging.WARNING:
            logger.setLevel(logging.WARNING if lvl > logging.DEBUG else logging.INFO)

    access = logging.getLogger('uvicorn.access')
    if not any(isinstance(f, IngestAccessFilter) for f in access.filters):
        access.addFilter(IngestAccessFilter())
