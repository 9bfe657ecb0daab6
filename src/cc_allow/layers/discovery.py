"""Configuration layer discovery.

Layers, loosest to most specific:

======== ===============================================================
global   ``~/.config/cc-allow.toml``
project  ``.config/cc-allow.toml`` (legacy ``.claude/cc-allow.toml``)
local    ``.config/cc-allow.local.toml`` (legacy ``.claude/...``)
session  ``<root>/.config/cc-allow/sessions/<session_id>.toml``
explicit every ``--config PATH``, in the order given
======== ===============================================================

Project and local files are searched from the working directory up to
the project root, so a package inside a monorepo can carry its own.
When ``CC_PROJECT_DIR`` is set it is authoritative and only the root
itself is searched.  A project root equal to ``$HOME`` has no project or
local layers; ``~/.config/cc-allow.toml`` there is the global layer.
"""
from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from cc_allow.core.config import MAX_AGE_PATTERN
from cc_allow.core.types import LayerScope
from cc_allow.layers.loader import load_layer_file
from cc_allow.rules.compiler import RuleSet

logger = logging.getLogger(__name__)

PROJECT_DIR_ENV = "CC_PROJECT_DIR"

CONFIG_NAME = "cc-allow.toml"
LOCAL_CONFIG_NAME = "cc-allow.local.toml"
CONFIG_DIR = ".config"
LEGACY_CONFIG_DIR = ".claude"
SESSIONS_DIR = Path(CONFIG_DIR, "cc-allow", "sessions")

_MAX_AGE_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


@dataclass(frozen=True, slots=True)
class LayerPaths:
    """Discovered layer files; ``None`` where a layer has no file."""

    project_root: str = ""
    global_config: Path | None = None
    project: Path | None = None
    local: Path | None = None
    session: Path | None = None
    legacy: tuple[Path, ...] = ()

    def layers(self) -> Iterator[tuple[LayerScope, Path]]:
        """Yield ``(scope, path)`` for every present layer, loosest first."""
        for scope, path in (
            (LayerScope.GLOBAL, self.global_config),
            (LayerScope.PROJECT, self.project),
            (LayerScope.LOCAL, self.local),
            (LayerScope.SESSION, self.session),
        ):
            if path is not None:
                yield scope, path


# ---------------------------------------------------------------------------
# Project root
# ---------------------------------------------------------------------------

def _ancestors(start: Path) -> Iterator[Path]:
    yield start
    yield from start.parents


def find_project_root(cwd: str | Path, *, home: str = "", env: Mapping[str, str] | None = None) -> str:
    """Locate the project root for *cwd*.

    ``CC_PROJECT_DIR`` wins when set.  Otherwise the nearest ancestor
    holding ``.config/cc-allow.toml`` (``$HOME`` excluded, its file is the
    global layer), then the nearest holding a ``.claude/`` directory or a
    ``.git`` entry.  Returns ``""`` when nothing marks a project.
    """
    env = os.environ if env is None else env
    override = env.get(PROJECT_DIR_ENV, "")
    if override:
        return override

    start = Path(cwd)
    for directory in _ancestors(start):
        if home and str(directory) == home:
            continue
        if (directory / CONFIG_DIR / CONFIG_NAME).is_file():
            return str(directory)
    for directory in _ancestors(start):
        if (directory / LEGACY_CONFIG_DIR).is_dir() or (directory / ".git").exists():
            return str(directory)
    return ""


# ---------------------------------------------------------------------------
# Layer files
# ---------------------------------------------------------------------------

def _config_at(directory: Path, name: str) -> tuple[Path | None, bool]:
    preferred = directory / CONFIG_DIR / name
    if preferred.is_file():
        return preferred, False
    legacy = directory / LEGACY_CONFIG_DIR / name
    if legacy.is_file():
        return legacy, True
    return None, False


def session_config_path(project_root: str, session_id: str) -> Path | None:
    """Return the session layer file for *session_id*, if it exists.

    Ids containing a path separator or ``..`` are rejected.
    """
    if not session_id or not project_root:
        return None
    if "/" in session_id or "\\" in session_id or ".." in session_id:
        logger.warning("ignoring session id with path components: %r", session_id)
        return None
    path = Path(project_root) / SESSIONS_DIR / f"{session_id}.toml"
    return path if path.is_file() else None


def discover_layers(
    cwd: str | Path,
    *,
    home: str = "",
    session_id: str = "",
    env: Mapping[str, str] | None = None,
) -> LayerPaths:
    """Find every layer file that applies to *cwd*."""
    env = os.environ if env is None else env
    global_config = None
    if home:
        candidate = Path(home) / CONFIG_DIR / CONFIG_NAME
        global_config = candidate if candidate.is_file() else None

    root = find_project_root(cwd, home=home, env=env)
    if not root or (home and root == home):
        return LayerPaths(project_root=root, global_config=global_config)

    project = local = None
    legacy: list[Path] = []
    # An explicit project directory is authoritative; only the root is searched.
    search = [Path(root)] if env.get(PROJECT_DIR_ENV) else list(_ancestors(Path(cwd)))
    for directory in search:
        if project is None:
            project, is_legacy = _config_at(directory, CONFIG_NAME)
            if is_legacy:
                legacy.append(project)
        if local is None:
            local, is_legacy = _config_at(directory, LOCAL_CONFIG_NAME)
            if is_legacy:
                legacy.append(local)
        if (project is not None and local is not None) or str(directory) == root:
            break

    for path in legacy:
        logger.warning("%s uses the legacy .claude/ location; move it to %s/", path, CONFIG_DIR)

    return LayerPaths(
        project_root=root,
        global_config=global_config,
        project=project,
        local=local,
        session=session_config_path(root, session_id),
        legacy=tuple(legacy),
    )


def load_layers(paths: LayerPaths, explicit: Sequence[str | Path] = ()) -> list[RuleSet]:
    """Load the discovered layers plus *explicit* ones, loosest first."""
    rulesets = [load_layer_file(path, scope) for scope, path in paths.layers()]
    rulesets.extend(load_layer_file(path, LayerScope.EXPLICIT) for path in explicit)
    return rulesets


# ---------------------------------------------------------------------------
# Session cleanup
# ---------------------------------------------------------------------------

def parse_max_age(text: str) -> timedelta:
    """Parse ``"7d"`` / ``"24h"`` / ``"90m"`` into a :class:`timedelta`.

    Raises
    ------
    ValueError
        If *text* is not a number followed by ``d``, ``h`` or ``m``.
    """
    match = MAX_AGE_PATTERN.fullmatch(text.strip())
    if match is None:
        msg = f"invalid max age {text!r}: expected e.g. '7d', '24h' or '90m'"
        raise ValueError(msg)
    amount, unit = match.groups()
    return timedelta(**{_MAX_AGE_UNITS[unit]: int(amount)})


def cleanup_sessions(project_root: str | Path, max_age: str | timedelta) -> list[Path]:
    """Delete session layer files last modified more than *max_age* ago.

    Returns the deleted paths.  Files that cannot be inspected or removed
    are logged and left in place.
    """
    age = parse_max_age(max_age) if isinstance(max_age, str) else max_age
    directory = Path(project_root) / SESSIONS_DIR
    if not project_root or not directory.is_dir():
        return []

    cutoff = time.time() - age.total_seconds()
    removed: list[Path] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file() or entry.suffix != ".toml":
            continue
        try:
            if entry.stat().st_mtime < cutoff:
                entry.unlink()
                removed.append(entry)
        except OSError as exc:
            logger.warning("could not clean up session file %s: %s", entry, exc)
    if removed:
        logger.info("removed %d stale session file(s) from %s", len(removed), directory)
    return removed
