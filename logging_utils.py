"""Logging helpers for consistent console output and the operation log."""
import json
import logging
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.logging import RichHandler

OPS_LOGGER_NAME = "topic2deck.ops"


def _file_handler(log_path: Path, fallback_name: str) -> Optional[logging.Handler]:
    log_path = Path(log_path)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as exc:
        fallback = Path(tempfile.gettempdir()) / fallback_name
        try:
            handler = logging.FileHandler(fallback, mode="a", encoding="utf-8")
            print(
                f"[WARN] Failed to open log file at {log_path} ({exc}). "
                f"Logging to {fallback} instead.",
                file=sys.stderr,
            )
            return handler
        except OSError:
            print(
                f"[WARN] Failed to open log file at {log_path} ({exc}). "
                "Continuing without file logging.",
                file=sys.stderr,
            )
    return None


def setup_logging(
    verbose: bool = False,
    log_path: Optional[Path] = None,
    ops_log_path: Optional[Path] = None,
) -> None:
    """Function setup logging.

    Args:
        verbose (bool):
        log_path (Optional[Path]):
        ops_log_path (Optional[Path]):

    Returns:
        None:
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [RichHandler(rich_tracebacks=False, markup=False)]
    if log_path is not None:
        handler = _file_handler(log_path, "topic2deck.run.log")
        if handler is not None:
            handlers.append(handler)
    # RichHandler already formats level/name; keep a clean message format
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=handlers,
        force=True,
    )

    ops_logger = logging.getLogger(OPS_LOGGER_NAME)
    for h in list(ops_logger.handlers):
        ops_logger.removeHandler(h)
        h.close()
    if ops_log_path is not None:
        handler = _file_handler(ops_log_path, "topic2deck.ops.log")
        if handler is not None:
            handler.setFormatter(logging.Formatter("%(message)s"))
            ops_logger.addHandler(handler)
            ops_logger.setLevel(logging.INFO)
            ops_logger.propagate = False


class OperationLog:
    """Structured sink for pipeline operations.

    Each call to ``record`` emits one JSON object on the ``topic2deck.ops``
    logger. Recording is best-effort: serialization problems are reported on the
    regular logger and never reach the caller.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(OPS_LOGGER_NAME)

    def record(self, operation: str, **details: Any) -> None:
        entry = {"operation": operation, **details, "timestamp": datetime.now().isoformat(timespec="seconds")}
        try:
            self.logger.info(json.dumps(entry, default=str, ensure_ascii=False))
        except (TypeError, ValueError):
            logging.getLogger("topic2deck").warning("Could not record operation %s", operation, exc_info=True)
