#!/usr/bin/env python3
# kegup_logger.py
"""
KegupLogger — structured event logger for kegup

Features:
 - Colorized terminal output through rich, with dark/light/plain themes
 - JSON structured output option (one object per line)
 - Respects config: output.quiet, output.json, output.theme, logging.dir, logging.to_file
 - RotatingFileHandler for persistent logs plus a separate error log (kegup-errors.log)
 - heading()/echo() helpers for the "==> Title" style output of the upgrade command
 - perf_timer decorator that aggregates timings in memory
"""

from __future__ import annotations

import functools
import json
import logging
import sys
import threading
import time
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.markup import escape

# ----------------- defaults -----------------
DEFAULT_THEME = "dark"  # dark | light | plain
DEFAULT_LOG_FILE = "kegup.log"
DEFAULT_ERROR_FILE = "kegup-errors.log"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUPS = 3

THEMES = {
    "dark": {"heading": "bold blue", "info": "green", "warning": "yellow", "error": "bold red", "debug": "cyan"},
    "light": {"heading": "bold", "info": "dark_green", "warning": "dark_orange", "error": "red", "debug": "blue"},
    "plain": {},
}


# ----------------- helpers -----------------
def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _safe_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


# ----------------- main logger class -----------------
class KegupLogger:
    """
    KegupLogger manages console/file/json logging.
    Use KegupLogger.from_config(cfg) to build from a ConfigStore.
    """

    def __init__(
        self,
        *,
        module: str = "kegup",
        log_dir: Optional[str] = None,
        json_out: bool = False,
        quiet: bool = False,
        verbose: bool = False,
        theme: str = DEFAULT_THEME,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backups: int = DEFAULT_BACKUPS,
        console: Optional[Console] = None,
    ):
        self.module = module
        self.json_out = json_out
        self.quiet = quiet
        self.verbose = verbose
        self.theme = theme if theme in THEMES else DEFAULT_THEME
        self.console = console or Console(no_color=self.theme == "plain", highlight=False)
        self._styles = THEMES[self.theme]
        self._lock = threading.RLock()

        self._pylogger = logging.getLogger(f"kegup.{self.module}")
        self._pylogger.setLevel(logging.DEBUG)
        self._pylogger.propagate = False
        self.log_path: Optional[Path] = None
        self.error_log_path: Optional[Path] = None
        if log_dir:
            base_dir = Path(log_dir).expanduser()
            base_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = base_dir / DEFAULT_LOG_FILE
            self.error_log_path = base_dir / DEFAULT_ERROR_FILE
            # configure handlers only once per log path
            if not any(getattr(h, "baseFilename", None) == str(self.log_path) for h in self._pylogger.handlers):
                self._configure_file_handler(max_bytes, backups)
        if not self._pylogger.handlers:
            # keeps logging.lastResort from echoing records to stderr
            self._pylogger.addHandler(logging.NullHandler())

        # in-memory metrics aggregator: {func_name: {"count":N, "total":secs}}
        self._metrics: Dict[str, Dict[str, Any]] = {}

    # ----------------- constructor helper -----------------
    @classmethod
    def from_config(cls, cfg: Any = None, module: str = "kegup", console: Optional[Console] = None) -> "KegupLogger":
        """
        Build KegupLogger from `cfg` (ConfigStore)
        """
        if cfg is None:
            return cls(module=module, console=console)
        to_file = cfg.get_bool("logging.to_file", True)
        return cls(
            module=module,
            log_dir=cfg.get("logging.dir") if to_file else None,
            json_out=cfg.get_bool("output.json"),
            quiet=cfg.get_bool("output.quiet"),
            theme=cfg.get("output.theme", DEFAULT_THEME),
            max_bytes=int(cfg.get("logging.max_bytes", DEFAULT_MAX_BYTES)),
            backups=int(cfg.get("logging.backups", DEFAULT_BACKUPS)),
            console=console,
        )

    # ----------------- internal file handler -----------------
    def _configure_file_handler(self, max_bytes: int, backups: int) -> None:
        handler = RotatingFileHandler(str(self.log_path), maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        self._pylogger.addHandler(handler)
        err_handler = RotatingFileHandler(str(self.error_log_path), maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
        err_handler.setLevel(logging.ERROR)
        err_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        self._pylogger.addHandler(err_handler)

    # ----------------- emit helpers -----------------
    def _style(self, key: str, text: str) -> str:
        style = self._styles.get(key)
        return f"[{style}]{text}[/{style}]" if style else text

    def _format_text(self, level: str, message: str, meta: Dict[str, Any]) -> str:
        body = escape(message)
        if self.verbose and meta:
            body += " " + escape(_safe_json(meta))
        if level == "warning":
            return f"{self._style('warning', 'Warning:')} {body}"
        if level == "error":
            return f"{self._style('error', 'Error:')} {body}"
        if level == "debug":
            return self._style("debug", body)
        return body

    def _format_json(self, level: str, event: str, message: str, meta: Dict[str, Any]) -> str:
        payload = {
            "ts": _now_iso(),
            "level": level.upper(),
            "module": self.module,
            "event": event,
            "msg": message,
            "meta": meta,
        }
        return _safe_json(payload)

    def _emit(self, level: str, event: str, message: str = "", **meta) -> None:
        """
        Core emit: writes to the console (text or json) and to the log files.
        """
        with self._lock:
            show = not self.quiet or level == "error"
            if level == "debug" and not self.verbose:
                show = False
            if show:
                if self.json_out:
                    print(self._format_json(level, event, message, meta), file=sys.stderr)
                else:
                    self.console.print(self._format_text(level, message, meta))
            pylevel = getattr(logging, level.upper(), logging.INFO)
            line = f"{event}: {message}"
            if meta:
                line += " " + _safe_json(meta)
            self._pylogger.log(pylevel, line)

    # ------------- public API: logging convenience -------------
    def info(self, event: str, message: str = "", **meta) -> None:
        self._emit("info", event, message, **meta)

    def warning(self, event: str, message: str = "", **meta) -> None:
        self._emit("warning", event, message, **meta)

    def error(self, event: str, message: str = "", exc: Optional[BaseException] = None, **meta) -> None:
        if exc is not None:
            meta["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._emit("error", event, message, **meta)

    def debug(self, event: str, message: str = "", **meta) -> None:
        self._emit("debug", event, message, **meta)

    # ---------------- console helpers ----------------
    def heading(self, text: str) -> None:
        """Print a '==> text' section heading (suppressed in json/quiet mode)."""
        if self.json_out or self.quiet:
            return
        self.console.print(f"{self._style('heading', '==>')} {self._style('heading', escape(text))}")

    def echo(self, text: str = "") -> None:
        if self.json_out:
            return
        self.console.print(escape(text))

    # ---------------- perf timer decorator ----------------
    def perf_timer(self, name: Optional[str] = None):
        """
        Decorator to time functions and store metrics in memory.
        Usage:
            @logger.perf_timer("size.estimate")
            def estimate(...): ...
        """
        def deco(fn: Callable):
            fname = name or f"{fn.__module__}.{fn.__name__}"

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                start = time.time()
                try:
                    return fn(*args, **kwargs)
                finally:
                    duration = time.time() - start
                    with self._lock:
                        m = self._metrics.setdefault(fname, {"count": 0, "total": 0.0})
                        m["count"] += 1
                        m["total"] += duration
                    self._emit("debug", f"perf.{fname}", f"{fname} took {duration:.3f}s", duration=duration)
            return wrapper
        return deco

    # ---------------- metrics / introspection ----------------
    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """
        Return a shallow copy of aggregated metrics.
        """
        with self._lock:
            return {k: dict(v) for k, v in self._metrics.items()}

    # ---------------- convenience ----------------
    def set_quiet(self, v: bool):
        with self._lock:
            self.quiet = bool(v)

    def set_verbose(self, v: bool):
        with self._lock:
            self.verbose = bool(v)

    def flush(self):
        for h in self._pylogger.handlers:
            h.flush()
