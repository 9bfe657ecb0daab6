"""Typed pattern parsing and matching.

Pattern syntax (prefix selects the kind)::

    git                 literal, exact equality
    path:$HOME/.ssh/**  path glob, ``**`` crosses directories
    re:^https://        regular expression, search semantics
    flags:rf            bundled short options containing every char
    flags[--]:rec       same, with an explicit delimiter
    ref:read.deny.paths cross-reference to another pattern list
    !path:/tmp/**       negation of an explicit kind (not ``ref:``)

Patterns are parsed and validated once, at configuration load.  Regexes
are compiled through a module-level :func:`functools.lru_cache`, so the
match path never recompiles.  Absolute path globs are compared against
the canonical (symlink-free) form of path-like candidates.
"""
from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from wcmatch import glob

from cc_allow.core.errors import InvalidPattern
from cc_allow.pathutil import has_path_vars, is_path_like, resolve_path

if TYPE_CHECKING:
    from cc_allow.matching.references import ReferenceTable
    from cc_allow.pathutil import PathVars

logger = logging.getLogger(__name__)

_GLOB_FLAGS = glob.GLOBSTAR | glob.DOTGLOB | glob.BRACE

_NEGATABLE_PREFIXES = ("re:", "path:", "flags:", "flags[")


class PatternKind(enum.StrEnum):
    LITERAL = "literal"
    PATH = "path"
    REGEX = "regex"
    FLAGS = "flags"
    REF = "ref"


# ---------------------------------------------------------------------------
# Compiled regex cache (module-level)
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1024)
def _compile_regex(expression: str) -> re.Pattern[str]:
    """Compile and cache a regular expression.

    Raises
    ------
    re.error
        If the expression is syntactically invalid.
    """
    return re.compile(expression)


# ---------------------------------------------------------------------------
# Pattern
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Pattern:
    """A parsed pattern.

    Attributes
    ----------
    raw:
        The pattern exactly as written in configuration.
    kind:
        Which matcher applies.
    body:
        The text after the prefix (regex source, glob, literal, ref key).
    negated:
        Invert the match result.
    flag_delimiter / flag_chars:
        Only set for :attr:`PatternKind.FLAGS`.
    """

    raw: str
    kind: PatternKind
    body: str
    negated: bool = False
    flag_delimiter: str = ""
    flag_chars: str = ""

    @property
    def is_literal(self) -> bool:
        return self.kind is PatternKind.LITERAL

    def __str__(self) -> str:
        return self.raw


def parse_pattern(text: str) -> Pattern:
    """Parse *text* into a :class:`Pattern`.

    Raises
    ------
    InvalidPattern
        For a bad regex, a malformed flag pattern, or an empty ``ref:``
        or ``path:`` body.
    """
    source = text
    negated = False
    if text.startswith("!") and text[1:].startswith(_NEGATABLE_PREFIXES):
        negated = True
        text = text[1:]

    if text.startswith("ref:"):
        key = text[len("ref:"):]
        if not key:
            raise InvalidPattern(f"empty ref path in {source!r}", details={"pattern": source})
        return Pattern(raw=source, kind=PatternKind.REF, body=key)

    if text.startswith("re:"):
        expression = text[len("re:"):]
        try:
            _compile_regex(expression)
        except re.error as exc:
            raise InvalidPattern(
                f"invalid regex {source!r}: {exc}",
                details={"pattern": source},
            ) from exc
        return Pattern(raw=source, kind=PatternKind.REGEX, body=expression, negated=negated)

    if text.startswith("path:"):
        body = text[len("path:"):]
        if not body:
            raise InvalidPattern(f"empty path pattern in {source!r}", details={"pattern": source})
        return Pattern(raw=source, kind=PatternKind.PATH, body=body, negated=negated)

    if text.startswith(("flags:", "flags[")):
        delimiter, chars = _parse_flags(text, source)
        return Pattern(
            raw=source,
            kind=PatternKind.FLAGS,
            body=chars,
            negated=negated,
            flag_delimiter=delimiter,
            flag_chars=chars,
        )

    return Pattern(raw=source, kind=PatternKind.LITERAL, body=source)


def _parse_flags(text: str, source: str) -> tuple[str, str]:
    if text.startswith("flags["):
        close = text.find("]:")
        if close == -1:
            raise InvalidPattern(f"flag pattern {source!r} is missing ']:'", details={"pattern": source})
        delimiter = text[len("flags["):close]
        chars = text[close + 2:]
        if not delimiter:
            raise InvalidPattern(f"flag delimiter cannot be empty in {source!r}", details={"pattern": source})
    else:
        delimiter = "-"
        chars = text[len("flags:"):]
    if not chars:
        raise InvalidPattern(
            f"flag pattern {source!r} requires at least one character",
            details={"pattern": source},
        )
    if not (chars.isascii() and chars.isalnum()):
        raise InvalidPattern(f"flag chars must be alphanumeric, got {chars!r}", details={"pattern": source})
    return delimiter, chars


# ---------------------------------------------------------------------------
# PatternMatcher
# ---------------------------------------------------------------------------

class PatternMatcher:
    """Evaluates parsed patterns against candidate strings.

    Parameters
    ----------
    path_vars:
        Directories used for ``$HOME`` / ``$PROJECT_ROOT`` expansion and
        for canonicalizing path-like candidates.
    references:
        The flat, cycle-checked table ``ref:`` patterns resolve against.
        Without one, ``ref:`` patterns never match.
    """

    def __init__(
        self,
        path_vars: PathVars,
        references: ReferenceTable | None = None,
    ) -> None:
        self._vars = path_vars
        self._refs = references

    @property
    def path_vars(self) -> PathVars:
        return self._vars

    # -- matching -----------------------------------------------------------

    def match(self, pattern: Pattern, candidate: str) -> bool:
        """Return ``True`` if *pattern* matches *candidate*."""
        match pattern.kind:
            case PatternKind.LITERAL:
                matched = candidate == pattern.body
            case PatternKind.REGEX:
                matched = _compile_regex(pattern.body).search(candidate) is not None
            case PatternKind.PATH:
                matched = self._match_path(pattern.body, candidate)
            case PatternKind.FLAGS:
                matched = _match_flags(pattern.flag_delimiter, pattern.flag_chars, candidate)
            case PatternKind.REF:
                matched = self._match_ref(pattern.body, candidate)
        return not matched if pattern.negated else matched

    def match_any(self, patterns: Iterable[Pattern], candidate: str) -> bool:
        """Return ``True`` if any of *patterns* matches *candidate*."""
        return any(self.match(p, candidate) for p in patterns)

    def first_match(self, patterns: Iterable[Pattern], candidate: str) -> Pattern | None:
        """Return the first pattern matching *candidate*, or ``None``."""
        for pattern in patterns:
            if self.match(pattern, candidate):
                return pattern
        return None

    def match_path(self, pattern: Pattern, path: str) -> bool:
        """Match a pattern against a path that is already canonical."""
        if pattern.kind is PatternKind.PATH:
            matched = _globmatch(path, self._vars.expand(pattern.body))
            return not matched if pattern.negated else matched
        return self.match(pattern, path)

    # -- internal helpers ---------------------------------------------------

    def _match_path(self, body: str, candidate: str) -> bool:
        absolute = body.startswith("/") or has_path_vars(body)
        if absolute and is_path_like(candidate):
            expanded = self._vars.expand(body)
            resolved = resolve_path(candidate, self._vars.cwd, self._vars.home)
            return _globmatch(resolved, expanded)
        return _globmatch(candidate, body)

    def _match_ref(self, key: str, candidate: str) -> bool:
        if self._refs is None:
            logger.debug("ref:%s evaluated without a reference table", key)
            return False
        return self.match_any(self._refs.lookup(key), candidate)

    # -- cache management ---------------------------------------------------

    @staticmethod
    def clear_cache() -> None:
        """Clear the compiled regex cache."""
        _compile_regex.cache_clear()

    @staticmethod
    def cache_info() -> Any:
        """Return regex cache statistics."""
        return _compile_regex.cache_info()


def _globmatch(candidate: str, pattern: str) -> bool:
    if glob.globmatch(candidate, pattern, flags=_GLOB_FLAGS):
        return True
    # A trailing "/**" also covers the directory itself.
    prefix = pattern[:-3] if pattern.endswith("/**") else ""
    return bool(prefix) and glob.globmatch(candidate, prefix, flags=_GLOB_FLAGS)


def _match_flags(delimiter: str, chars: str, candidate: str) -> bool:
    if not candidate.startswith(delimiter):
        return False
    if delimiter == "-" and candidate.startswith("--"):
        return False
    rest = candidate[len(delimiter):]
    if not rest:
        return False
    return all(c in rest for c in chars)
