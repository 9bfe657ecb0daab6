"""Command-name resolution.

:class:`CommandResolver` maps a command name to an absolute binary path, a
builtin flag, or "unresolved".  Builtins and reserved words run inside the
shell itself and bypass the filesystem entirely.  Every other resolved
path is symlink-resolved so a rule written against a binary name cannot be
satisfied by a symlink pointing at a different binary.

Resolvers are cheap and own their cache; the engine creates one per
evaluation context and search-path list, so there is no process-wide
mutable state.
"""
from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Builtins and reserved words
# ---------------------------------------------------------------------------

BUILTINS: frozenset[str] = frozenset({
    # POSIX special builtins
    "break", ":", ".", "continue", "eval", "exec", "exit", "export",
    "readonly", "return", "set", "shift", "times", "trap", "unset",
    # POSIX regular builtins
    "alias", "bg", "cd", "command", "false", "fc", "fg", "getopts", "hash",
    "jobs", "kill", "newgrp", "pwd", "read", "true", "type", "ulimit",
    "umask", "unalias", "wait",
    # bash builtins
    "bind", "builtin", "caller", "compgen", "complete", "compopt",
    "declare", "dirs", "disown", "enable", "help", "history", "let",
    "local", "logout", "mapfile", "popd", "printf", "pushd", "readarray",
    "shopt", "source", "suspend", "typeset",
    # reserved words
    "if", "then", "else", "elif", "fi", "case", "esac", "for", "while",
    "until", "do", "done", "in", "function", "select", "time", "coproc",
    "[", "[[",
})


def is_builtin(name: str) -> bool:
    """Return ``True`` if *name* is a shell builtin or reserved word."""
    return name in BUILTINS


# ---------------------------------------------------------------------------
# Resolution result
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of resolving one command name.

    Attributes
    ----------
    path:
        Absolute, symlink-resolved path; ``""`` for builtins and
        unresolved names.
    is_builtin:
        ``True`` for builtins and reserved words.
    unresolved:
        ``True`` when no executable could be found.  This is ordinary
        data, handled by the ``unresolved_commands`` policy.
    """

    path: str = ""
    is_builtin: bool = False
    unresolved: bool = False


_BUILTIN = Resolution(is_builtin=True)
_UNRESOLVED = Resolution(unresolved=True)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class CommandResolver:
    """Resolves command names with a per-instance cache.

    Parameters
    ----------
    search_paths:
        Ordered directories to search for bare names.  Entries may
        contain environment-variable placeholders (``$HOME/bin``).  When
        empty, the standard ``PATH`` lookup is used instead.
    cwd:
        Directory that names containing a separator are joined onto.
        Defaults to the process working directory.
    """

    def __init__(
        self,
        search_paths: Sequence[str] = (),
        *,
        cwd: str | None = None,
    ) -> None:
        self._search_paths = tuple(search_paths)
        self._cwd = cwd
        self._cache: dict[str, Resolution] = {}

    @property
    def search_paths(self) -> tuple[str, ...]:
        return self._search_paths

    def resolve(self, name: str) -> Resolution:
        """Resolve *name* to a :class:`Resolution`."""
        if is_builtin(name):
            return _BUILTIN

        if os.path.isabs(name):
            return Resolution(path=name) if os.path.exists(name) else _UNRESOLVED

        if "/" in name:
            return self._resolve_relative(name)

        cached = self._cache.get(name)
        if cached is not None:
            return cached

        result = self._look_path(name)
        self._cache[name] = result
        logger.debug("resolved %r -> %r", name, result)
        return result

    def clear_cache(self) -> None:
        """Forget every cached bare-name lookup."""
        self._cache.clear()

    # -- internal helpers ---------------------------------------------------

    def _resolve_relative(self, name: str) -> Resolution:
        cwd = self._cwd or os.getcwd()
        candidate = os.path.normpath(os.path.join(cwd, name))
        try:
            return Resolution(path=os.path.realpath(candidate, strict=True))
        except OSError:
            return _UNRESOLVED

    def _look_path(self, name: str) -> Resolution:
        if self._search_paths:
            for directory in self._search_paths:
                candidate = os.path.join(os.path.expandvars(directory), name)
                if _is_executable_file(candidate):
                    return Resolution(path=os.path.realpath(candidate))
            return _UNRESOLVED

        found = shutil.which(name)
        if found is None:
            return _UNRESOLVED
        return Resolution(path=os.path.realpath(found))


def _is_executable_file(path: str) -> bool:
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    return stat.S_ISREG(mode) and bool(mode & 0o111)
