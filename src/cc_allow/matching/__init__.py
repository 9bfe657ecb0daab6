"""Pattern matching for rule conditions.

* **Pattern** / **parse_pattern** -- typed patterns parsed at load time.
* **PatternMatcher** -- evaluates patterns with path and reference context.
* **ReferenceTable** -- flat, cycle-checked ``ref:`` resolution.
"""
from __future__ import annotations

from cc_allow.matching.patterns import Pattern, PatternKind, PatternMatcher, parse_pattern
from cc_allow.matching.references import ReferenceTable

__all__ = [
    "Pattern",
    "PatternKind",
    "PatternMatcher",
    "ReferenceTable",
    "parse_pattern",
]
