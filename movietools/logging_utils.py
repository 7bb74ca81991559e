from __future__ import annotations

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
RICH_LOG_FORMAT = "[%(name)s] %(message)s"


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    """Configure root logging once with a consistent, readable format.

    Args:
        level: Optional log level name (e.g., "INFO", "DEBUG"). If omitted,
               reads LOG_LEVEL env or defaults to INFO.
        log_file: Optional path; when given, records are also appended there.
        console: Optional rich console; when given, terminal records go through
                 it so they are printed above any live progress display.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    log_level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    if console is not None:
        terminal: logging.Handler = RichHandler(console=console, show_path=False)
        # RichHandler prints its own time and level columns
        terminal.setFormatter(logging.Formatter(RICH_LOG_FORMAT))
    else:
        terminal = logging.StreamHandler()
    handlers: list[logging.Handler] = [terminal]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers)

    _CONFIGURED = True
