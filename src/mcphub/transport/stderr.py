"""Classification of server stderr output.

Many servers log routine information to stderr, so output is not treated as
fatal. A classifier decides which lines are surfaced as diagnostics; the
default looks for "error" anywhere in the line.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from mcphub.constants import MCP_STDERR_ERROR_PATTERN

StderrClassifier = Callable[[str], bool]


class PatternClassifier:
    """Classify a line as an error when it matches a case-insensitive pattern."""

    def __init__(self, pattern: str = MCP_STDERR_ERROR_PATTERN) -> None:
        self.pattern = pattern
        self._regex = re.compile(pattern, re.IGNORECASE)

    def __call__(self, line: str) -> bool:
        return self._regex.search(line) is not None

    def __repr__(self) -> str:
        return f"PatternClassifier({self.pattern!r})"


default_classifier = PatternClassifier()
