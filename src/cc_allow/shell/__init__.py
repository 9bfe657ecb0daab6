"""Shell input parsing and fact extraction."""
from __future__ import annotations

from cc_allow.shell.extractor import BashlexParser, ShellExtractor, extract

__all__ = [
    "BashlexParser",
    "ShellExtractor",
    "extract",
]
