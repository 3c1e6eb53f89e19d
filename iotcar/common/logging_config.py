from __future__ import annotations

import logging
import os
import sys
import threading
import weakref

_LEVEL_COLORS = {
    "TRACE": "\033[32m",  # green
    "DEBUG": "\033[36m",  # cyan
    "INFO": "\033[37m",  # light gray
    "WARNING": "\033[33m",  # yellow
    "ERROR": "\033[31m",  # red
    "CRITICAL": "\033[41m",  # red background
}
_RESET = "\033[0m"
_DIM = "\033[2m"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]

# Per-tick logging stays off the hot path unless explicitly enabled
TRACE_ENABLED = os.getenv("IOTCAR_TRACE", "0").strip().lower() in ("1", "true", "yes", "on")


class AnsiColorFormatter(logging.Formatter):
    """Compact 'HH:MM:SS LEVEL logger: msg' lines, colored on a TTY."""

    def __init__(self, colored: bool = True) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
        )
        self.colored = colored and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.colored:
            return base
        ts, sep, rest = base.partition(" ")
        if not sep:
            return base
        color = _LEVEL_COLORS.get(record.levelname.upper(), "")
        if color:
            rest = rest.replace(record.levelname, f"{color}{record.levelname}{_RESET}", 1)
        return f"{_DIM}{ts}{_RESET} {rest}"


# ---- NiceGUI log panel handler ----

_ui_log_targets: set[weakref.ref] = set()
_ui_lock = threading.Lock()


class UiLogHandler(logging.Handler):
    """Mirror log records into every registered ui.log widget."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        if not _ui_log_targets:
            return
        msg = self.format(record)
        with _ui_lock:
            for ref in list(_ui_log_targets):
                widget = ref()
                if widget is None:
                    _ui_log_targets.discard(ref)
                    continue
                try:
                    widget.push(msg)
                except Exception:
                    # Client disconnected; the widget is gone for good
                    _ui_log_targets.discard(ref)


def attach_ui_log(log_widget) -> None:
    with _ui_lock:
        _ui_log_targets.add(weakref.ref(log_widget))


def detach_ui_log(log_widget) -> None:
    with _ui_lock:
        _ui_log_targets.discard(weakref.ref(log_widget))


def configure_logging(
    level: int = logging.INFO, use_color: bool = True, add_ui_handler: bool = True
) -> logging.Logger:
    """
    Configure the root logger with a colored stderr handler and, optionally,
    the ui.log mirror. Safe to call more than once.
    """
    logger = logging.getLogger()
    logger.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        console = logging.StreamHandler(stream=sys.stderr)
        console.setLevel(level)
        console.setFormatter(AnsiColorFormatter(colored=use_color))
        logger.addHandler(console)

    if add_ui_handler and not any(isinstance(h, UiLogHandler) for h in logger.handlers):
        logger.addHandler(UiLogHandler(level=max(level, logging.INFO)))

    return logger
