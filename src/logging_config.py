"""Shared logging configuration for the triage pipeline.

Call ``configure_logging()`` once at any CLI entry point. It is idempotent:
if the root logger already has handlers, it does nothing.
"""

import logging
import os
from typing import Optional, Union


def configure_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure root logger with a stderr handler and an optional file handler.

    The file handler is only attached when ``log_file`` is set, so a default
    run leaves the working tree untouched.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(fmt)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            fh = logging.FileHandler(log_file, mode="a")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError as e:
            root.warning("Could not open log file %s: %s", log_file, e)

    root.setLevel(level)
