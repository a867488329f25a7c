"""Logging setup for scripts that drive the engine."""

import logging
from typing import Union

DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO, fmt: str = DEFAULT_FORMAT) -> None:
    """
    Configure the root logger once for command-line use.

    Args:
        level: Logging level or its name
        fmt: Log record format
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level {level!r}")
        level = numeric
    logging.basicConfig(level=level, format=fmt, force=True)
    logging.getLogger("statarb_engine").setLevel(level)
