"""Message templates.

Rule messages may reference the action being decided::

    message = "{{.Command}} may not write to {{.FileName}}"
    message = "do not force-push to {{.Arg 1}}"

Supported fields are listed in :data:`TEMPLATE_FIELDS`; ``{{.Arg N}}``
selects the N-th argument (0-based, command name excluded).  Templates are
validated at load time, so rendering never fails: a field the current
action does not populate renders as the empty string.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass

from cc_allow.core.errors import InvalidConfig

# ---------------------------------------------------------------------------
# Placeholder syntax
# ---------------------------------------------------------------------------
# Matches {{.Field}} or {{.Arg N}}, tolerating inner whitespace.
PLACEHOLDER_PATTERN: re.Pattern[str] = re.compile(
    r"\{\{\s*\.([A-Za-z]+)(?:\s+(\d+))?\s*\}\}"
)

# Any opening brace pair, used to find malformed placeholders.
_OPEN_PATTERN: re.Pattern[str] = re.compile(r"\{\{")

TEMPLATE_FIELDS: frozenset[str] = frozenset({
    "Command",
    "Args",
    "ArgsStr",
    "ResolvedPath",
    "Cwd",
    "PipesTo",
    "PipesFrom",
    "Target",
    "TargetFileName",
    "TargetDir",
    "Append",
    "Delimiter",
    "Body",
    "FilePath",
    "FileName",
    "FileDir",
    "Tool",
    "URL",
    "Home",
    "ProjectRoot",
})

BODY_LIMIT = 100


def truncate(text: str, limit: int = BODY_LIMIT) -> str:
    """Cut *text* to *limit* characters, marking the cut with ``...``."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass(frozen=True, slots=True)
class TemplateContext:
    """Values available to a message template.

    Different units populate different fields; the rest stay empty.
    """

    command: str = ""
    args: tuple[str, ...] = ()
    resolved_path: str = ""
    cwd: str = ""
    pipes_to: tuple[str, ...] = ()
    pipes_from: tuple[str, ...] = ()
    target: str = ""
    append: bool = False
    delimiter: str = ""
    body: str = ""
    file_path: str = ""
    tool: str = ""
    url: str = ""
    home: str = ""
    project_root: str = ""

    def arg(self, index: int) -> str:
        return self.args[index] if 0 <= index < len(self.args) else ""

    def value(self, name: str) -> str:
        match name:
            case "Command":
                return self.command
            case "Args" | "ArgsStr":
                return " ".join((self.command, *self.args)) if self.command else " ".join(self.args)
            case "ResolvedPath":
                return self.resolved_path
            case "Cwd":
                return self.cwd
            case "PipesTo":
                return " ".join(self.pipes_to)
            case "PipesFrom":
                return " ".join(self.pipes_from)
            case "Target":
                return self.target
            case "TargetFileName":
                return os.path.basename(self.target) if self.target else ""
            case "TargetDir":
                return os.path.dirname(self.target) if self.target else ""
            case "Append":
                return "true" if self.append else "false"
            case "Delimiter":
                return self.delimiter
            case "Body":
                return truncate(self.body)
            case "FilePath":
                return self.file_path
            case "FileName":
                return os.path.basename(self.file_path) if self.file_path else ""
            case "FileDir":
                return os.path.dirname(self.file_path) if self.file_path else ""
            case "Tool":
                return self.tool
            case "URL":
                return self.url
            case "Home":
                return self.home
            case "ProjectRoot":
                return self.project_root
        return ""


def validate_template(template: str) -> list[str]:
    """Return human-readable problems with *template*; empty means valid.

    Checks performed:
    1. Unknown field names.
    2. ``{{.Arg}}`` without an index, or an index on any other field.
    3. Opening ``{{`` without a well-formed placeholder.
    """
    errors: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(template):
        name, index = match.group(1), match.group(2)
        if name == "Arg":
            if index is None:
                errors.append("'{{.Arg}}' requires an index, e.g. '{{.Arg 0}}'.")
        elif name not in TEMPLATE_FIELDS:
            errors.append(f"Unknown template field '{name}'.")
        elif index is not None:
            errors.append(f"Template field '{name}' does not take an index.")

    stripped = PLACEHOLDER_PATTERN.sub("", template)
    remaining = len(_OPEN_PATTERN.findall(stripped))
    if remaining:
        errors.append(f"Found {remaining} malformed placeholder(s).")
    return errors


def check_template(template: str, *, location: str) -> str:
    """Validate *template* and return it, raising :class:`InvalidConfig`."""
    errors = validate_template(template)
    if errors:
        raise InvalidConfig(
            f"invalid message template at {location}: {'; '.join(errors)}",
            details={"location": location, "template": template, "errors": errors},
        )
    return template


def render(template: str, context: TemplateContext) -> str:
    """Substitute placeholders in an already-validated *template*."""
    if "{{" not in template:
        return template

    def _replace(match: re.Match[str]) -> str:
        name, index = match.group(1), match.group(2)
        if name == "Arg":
            return context.arg(int(index)) if index is not None else ""
        return context.value(name)

    return PLACEHOLDER_PATTERN.sub(_replace, template)
