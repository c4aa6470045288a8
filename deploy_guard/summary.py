"""
Run Reports and Step Outputs

SummaryWriter appends a human-readable markdown report to the CI step summary
and mirrors every line to the log. OutputWriter records the discrete values
(score, canary verdict, monitor outcome) the pipeline branches on.
"""

import logging
import os
from typing import Iterable, List, Optional, Sequence

from deploy_guard.secret_masking import mask_string

logger = logging.getLogger(__name__)


def _append(path: str, line: str):
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(line + "\n")


def format_percent(rate: float, digits: int = 2) -> str:
    return f"{rate * 100:.{digits}f}%"


class SummaryWriter:
    """
    Appends report lines to the step summary file.
    
    Every line is also logged and kept in ``lines`` so callers and tests can
    inspect the report without reading the file back.
    """
    
    def __init__(self, path: Optional[str] = None, log: Optional[logging.Logger] = None):
        self.path = path
        self.log = log or logger
        self.lines: List[str] = []
    
    @classmethod
    def from_env(cls) -> "SummaryWriter":
        return cls(os.getenv("GITHUB_STEP_SUMMARY") or None)
    
    def write(self, line: str = ""):
        line = mask_string(line)
        self.lines.append(line)
        if self.path:
            try:
                _append(self.path, line)
            except OSError as e:
                # The log mirror still carries the report
                self.log.warning(f"[SUMMARY] Could not write step summary: {e}")
        self.log.info(line)
    
    def heading(self, title: str):
        self.write(f"## {title}")
        self.write()
    
    def table(self, headers: Sequence[str], rows: Iterable[Sequence[object]]):
        self.write("| " + " | ".join(headers) + " |")
        self.write("|" + "|".join("-" * (len(h) + 2) for h in headers) + "|")
        for row in rows:
            self.write("| " + " | ".join(str(cell) for cell in row) + " |")
    
    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class OutputWriter:
    """Writes ``key=value`` step outputs for the pipeline to branch on"""
    
    def __init__(self, path: Optional[str] = None, log: Optional[logging.Logger] = None):
        self.path = path
        self.log = log or logger
        self.values = {}
    
    @classmethod
    def from_env(cls) -> "OutputWriter":
        return cls(os.getenv("GITHUB_OUTPUT") or None)
    
    def set(self, key: str, value: object):
        if isinstance(value, bool):
            value = "true" if value else "false"
        value = str(value)
        self.values[key] = value
        if self.path:
            try:
                _append(self.path, f"{key}={value}")
            except OSError as e:
                self.log.warning(f"[OUTPUT] Could not write step output {key}: {e}")
        self.log.info(f"{key}={value}")
