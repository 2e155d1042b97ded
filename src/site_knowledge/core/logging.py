"""
Logging setup for the service process.

Components log through named loggers under the ``knowledge`` namespace
(``knowledge.search``, ``knowledge.ingest``, ...). This module only installs
the root handler and level once at startup.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if any(getattr(h, "_knowledge_handler", False) for h in root.handlers):
        root.setLevel(level.upper())
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._knowledge_handler = True  # type: ignore[attr-defined]

    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request at INFO; keep crawler output readable
    logging.getLogger("httpx").setLevel(logging.WARNING)
