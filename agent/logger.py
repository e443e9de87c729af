# agent/logger.py — Splice v1
import logging
import os

from rich.console import Console

# ── UI bridge (set by tui/app.py at startup) ─────────────────────────────────
UI_CALLBACK = None   # callable(str): writes a line to the chat log

_console = Console(stderr=True, highlight=False)


def _safe_ui_callback(msg: str) -> None:
    """Forward to the UI when one is attached, otherwise render on stderr."""
    cb = UI_CALLBACK
    if cb is None:
        _console.print(msg)
        return
    try:
        cb(msg)
    except RuntimeError:
        # Textual raises RuntimeError("App is not running") on background
        # threads after the TUI exits.
        _console.print(msg)


class UILogHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            _safe_ui_callback(self.format(record))
        except Exception:
            self.handleError(record)


def setup_logger(log_file: str = "") -> logging.Logger:
    logger = logging.getLogger("Splice")
    logger.setLevel(logging.DEBUG)

    if not logger.handlers:
        path = log_file or os.getenv("SPLICE_LOG_FILE", "splice.log")
        fh = logging.FileHandler(path, encoding="utf-8", mode="a", delay=True)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(module)s:%(lineno)d | %(message)s"
        ))

        uh = UILogHandler()
        uh.setLevel(logging.INFO)
        uh.setFormatter(logging.Formatter("[dim]%(asctime)s[/dim] | %(message)s"))

        logger.addHandler(fh)
        logger.addHandler(uh)

    return logger


log = setup_logger()
