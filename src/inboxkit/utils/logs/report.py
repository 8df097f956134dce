"""Logger factory shared across the inboxkit code-base.

Every module grabs its logger the same way::

    from inboxkit.utils.logs import report

    logger = report.settings(__file__)
    logger.info("Loaded %s campaigns", len(campaigns))

Analyzers never log from inside their algorithms.  They accept an optional
*observer* instead and call ``observer.trace(event, **fields)``; pass a
:class:`ReportObserver` to route those traces into the log.

Environment
-----------
INBOXKIT_LOG_LEVEL   Root level for the ``inboxkit`` logger tree (default ``WARNING``).
INBOXKIT_LOG_DIR     When set, a ``inboxkit.log`` file handler is added in that directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional, Protocol

ROOT_LOGGER = "inboxkit"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------------------------------------------------------------------
# 🪵  Logger configuration
# ---------------------------------------------------------------------------


def _logger_name(file: str) -> str:
    """Return a dotted logger name for *file* rooted at ``inboxkit``.

    ``.../src/inboxkit/analysis/gaps.py`` becomes ``inboxkit.analysis.gaps``;
    files outside the package fall back to ``inboxkit.<stem>``.
    """
    path = Path(file)
    parts = list(path.with_suffix("").parts)
    if ROOT_LOGGER in parts:
        idx = len(parts) - 1 - parts[::-1].index(ROOT_LOGGER)
        return ".".join(parts[idx:])
    return f"{ROOT_LOGGER}.{path.stem}"


def _configure_root(root: logging.Logger) -> None:
    level = os.getenv("INBOXKIT_LOG_LEVEL", "WARNING").upper()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    root.addHandler(stream)

    log_dir = os.getenv("INBOXKIT_LOG_DIR")
    if log_dir:
        target = Path(log_dir)
        target.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target / "inboxkit.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False


def settings(file: str, level: Optional[str] = None) -> logging.Logger:
    """Return the module logger for *file*, configuring the root tree once."""
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        _configure_root(root)
    logger = logging.getLogger(_logger_name(file))
    if level:
        logger.setLevel(level.upper())
    return logger


# ---------------------------------------------------------------------------
# 🔭  Trace observers
# ---------------------------------------------------------------------------


class Observer(Protocol):
    def trace(self, event: str, **fields: Any) -> None:
        ...


class NullObserver:
    """Discards every trace."""

    def trace(self, event: str, **fields: Any) -> None:
        return None


class ReportObserver:
    """Forward analyzer trace events to a logger at DEBUG level."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or settings(__file__)

    def trace(self, event: str, **fields: Any) -> None:
        if not self.logger.isEnabledFor(logging.DEBUG):
            return
        detail = " ".join(f"{key}={fields[key]!r}" for key in sorted(fields))
        self.logger.debug("%s %s", event, detail)


NULL_OBSERVER = NullObserver()


__all__ = [
    "settings",
    "Observer",
    "NullObserver",
    "ReportObserver",
    "NULL_OBSERVER",
]
