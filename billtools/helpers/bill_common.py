"""Shared plumbing for the bill maintenance tools.

Logging, prompts and small file helpers used by every script under
billtools/maintenance and billtools/patch.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# ===== Lightweight TRACE logger =====
TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


def _trace(self, message, *args, **kws):
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kws)


logging.Logger.trace = _trace


def setup_logger(verbose: bool = False) -> None:
    level = TRACE_LEVEL_NUM if verbose else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


# Exit codes shared by the CLIs
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CANCELLED = 2
EXIT_PARTIAL = 3
EXIT_INTERRUPTED = 130


def eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


def now_ts_local() -> str:
    return datetime.now(timezone.utc).astimezone().strftime("%Y%m%d-%H%M%S")


def prompt_with_default(prompt_text: str, default_val: str) -> str:
    try:
        entered = input(f"{prompt_text} (default='{default_val}'): ").strip()
    except EOFError:
        entered = ""
    return entered if entered else default_val


def safe_write_json(path: str, data: Any) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    os.replace(tmp, path)


def truncate(text: Any, width: int) -> str:
    s = "" if text is None else str(text)
    return s[:width]


def rule(width: int = 80) -> str:
    return "-" * width
