from __future__ import annotations

import logging
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(
    debug: bool = False,
    log_file: Path | None = None,
    console: Console | None = None,
) -> None:
    """Configure the `drmirror` logger.

    Records go to stderr through rich; `log_file` adds a plain-text copy.
    `LOG_LEVEL` sets the level unless `debug` forces DEBUG.
    """
    env_level = os.getenv("LOG_LEVEL", "WARNING").upper()
    level = logging.DEBUG if debug else getattr(logging, env_level, logging.WARNING)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=console or Console(stderr=True),
            show_path=debug,
            rich_tracebacks=debug,
        )
    ]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        handlers.append(file_handler)

    root = logging.getLogger("drmirror")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
