"""Logging setup for applications embedding stepflow.

Library modules only create loggers (``logging.getLogger(__name__)``) and
pass ``workflow_name``, ``run_id`` and ``step_index`` through ``extra``.
setup_logging() installs handlers whose format shows that context.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(run_context)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONTEXT_FIELDS = ("workflow_name", "run_id", "step_index")


class RunContextFilter(logging.Filter):
    """Render the optional run fields of a record as ``[workflow/run#step]``."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [
            str(getattr(record, name)) for name in _CONTEXT_FIELDS[:2]
            if getattr(record, name, None) is not None
        ]
        context = "/".join(parts)
        step_index = getattr(record, "step_index", None)
        if step_index is not None:
            context += f"#{step_index + 1}"
        record.run_context = f"[{context}]" if context else ""
        return True


def _handler(handler: logging.Handler) -> logging.Handler:
    handler.setLevel(logging.DEBUG)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(verbose: bool = False, log_file: Optional[Union[str, Path]] = None) -> None:
    """Configure the root logger.

    Nothing reaches the console unless verbose is set, in which case every
    level goes to stderr. A log_file receives every level regardless.
    Calling this again replaces the handlers from the previous call.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    if verbose:
        root_logger.addHandler(_handler(logging.StreamHandler(sys.stderr)))

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_handler(logging.FileHandler(path, encoding="utf-8")))

    root_logger.setLevel(logging.DEBUG)
