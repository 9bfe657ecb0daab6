"""Symlink-safe path canonicalization.

:func:`resolve_path` turns any path string into an absolute, symlink-free
form so that a rule keyed on a real directory still fires when the path
is reached through a symlink.  Paths that do not exist yet (write or
create targets) resolve their deepest existing ancestor and re-append the
missing suffix, which still catches directory-level symlink escapes.
"""
from __future__ import annotations

import os

_PATH_PREFIXES = ("/", "./", "../", "~/")
_PATH_EXACT = frozenset({"~", ".", ".."})


def expand_home(path: str, home: str) -> str:
    """Expand a leading ``~`` or ``~/`` to *home*."""
    if path == "~":
        return home
    if path.startswith("~/"):
        return os.path.join(home, path[2:])
    return path


def resolve_path(path: str, cwd: str, home: str) -> str:
    """Resolve *path* to a canonical absolute path.

    Parameters
    ----------
    path:
        The path as written, possibly relative or starting with ``~``.
    cwd:
        Directory relative paths are joined onto.
    home:
        Home directory used for ``~`` expansion.

    Returns
    -------
    str
        The canonical path, or ``""`` for an empty input.
    """
    if not path:
        return ""
    path = expand_home(path, home)
    if not os.path.isabs(path):
        path = os.path.join(cwd, path)
    path = os.path.normpath(path)
    try:
        return os.path.realpath(path, strict=True)
    except OSError:
        return _resolve_missing(path)


def _resolve_missing(path: str) -> str:
    """Resolve the deepest existing ancestor and re-append the rest."""
    current = path
    remaining: list[str] = []
    while current not in ("/", ""):
        try:
            resolved = os.path.realpath(current, strict=True)
        except OSError:
            current, tail = os.path.split(current)
            remaining.append(tail)
            continue
        return os.path.join(resolved, *reversed(remaining))
    return path


def is_path_like(value: str) -> bool:
    """Heuristically decide whether a bare string names a path.

    A string is path-like when it starts with ``/``, ``./``, ``../`` or
    ``~/``, equals ``~``, ``.`` or ``..``, or contains a separator without
    starting with ``-`` (which would make it an option flag).
    """
    if not value:
        return False
    if value.startswith(_PATH_PREFIXES) or value in _PATH_EXACT:
        return True
    return "/" in value and not value.startswith("-")
