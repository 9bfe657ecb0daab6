"""Path variables available to ``path:`` patterns."""
from __future__ import annotations

import os
from dataclasses import dataclass

PATH_VARIABLES: tuple[str, ...] = ("$PROJECT_ROOT", "$HOME")


def has_path_vars(pattern: str) -> bool:
    """Return ``True`` if *pattern* references ``$PROJECT_ROOT`` or ``$HOME``."""
    return any(var in pattern for var in PATH_VARIABLES)


@dataclass(frozen=True, slots=True)
class PathVars:
    """Snapshot of the directories patterns and paths are resolved against.

    Attributes
    ----------
    cwd:
        Working directory of the evaluated action.
    home:
        Home directory, or ``""`` when unknown.
    project_root:
        Detected project root, or ``""`` outside a project.
    """

    cwd: str
    home: str = ""
    project_root: str = ""

    @classmethod
    def from_environment(cls, project_root: str = "", cwd: str | None = None) -> PathVars:
        home = os.environ.get("HOME", "")
        return cls(
            cwd=cwd or os.getcwd(),
            home=os.path.realpath(home) if home else "",
            project_root=os.path.realpath(project_root) if project_root else "",
        )

    @property
    def home_set(self) -> bool:
        return bool(self.home)

    def expand(self, pattern: str) -> str:
        """Substitute known variables in *pattern*; unknown ones are left as-is."""
        result = pattern
        if self.project_root:
            result = result.replace("$PROJECT_ROOT", self.project_root)
        if self.home:
            result = result.replace("$HOME", self.home)
        return result
