"""Path canonicalization, path variables and command resolution.

* **resolve_path** / **is_path_like** -- symlink-safe canonical paths.
* **PathVars** -- ``$PROJECT_ROOT`` / ``$HOME`` expansion for patterns.
* **CommandResolver** -- command name to binary path, builtin or unresolved.
"""
from __future__ import annotations

from cc_allow.pathutil.canonical import expand_home, is_path_like, resolve_path
from cc_allow.pathutil.resolver import (
    BUILTINS,
    CommandResolver,
    Resolution,
    is_builtin,
)
from cc_allow.pathutil.variables import PATH_VARIABLES, PathVars, has_path_vars

__all__ = [
    "BUILTINS",
    "PATH_VARIABLES",
    "CommandResolver",
    "PathVars",
    "Resolution",
    "expand_home",
    "has_path_vars",
    "is_builtin",
    "is_path_like",
    "resolve_path",
]
