from __future__ import annotations

import logging

from eventmetrics.config import settings

_LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | None = None) -> None:
    """Install a root handler for processes that embed the metrics pipeline.

    Library modules only ever call ``logging.getLogger(__name__)``; this
    function is meant for worker entry points and scripts.

    Args:
        level: Log level name.  Defaults to ``settings.LOG_LEVEL``.
    """
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
    )
