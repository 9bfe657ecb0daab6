"""Decision units of a shell input.

A shell input is decided unit by unit: every command stage, file
redirect, heredoc and policed construct is evaluated by every layer on
its own, and the per-unit decisions are combined strictly afterwards.
Descriptor duplications (``2>&1``) touch no file and are not units.  A
construct the parser could not represent is a unit of its own, so it can
never pass silently.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

from cc_allow.core.types import CommandFacts, Construct, Heredoc, Redirect, ShellFacts


class UnitKind(enum.StrEnum):
    COMMAND = "command"
    REDIRECT = "redirect"
    HEREDOC = "heredoc"
    CONSTRUCT = "construct"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True, slots=True)
class Unit:
    """One independently decided part of a shell input."""

    kind: UnitKind
    command: CommandFacts | None = None
    redirect: Redirect | None = None
    heredoc: Heredoc | None = None
    construct: Construct | None = None
    reason: str = ""

    @property
    def label(self) -> str:
        match self.kind:
            case UnitKind.COMMAND:
                return f"command {self.command.name.text}"
            case UnitKind.REDIRECT:
                return f"redirect {self.redirect.operator} {self.redirect.target.text}"
            case UnitKind.HEREDOC:
                return "here-string" if self.heredoc.here_string else f"heredoc {self.heredoc.delimiter}"
            case UnitKind.CONSTRUCT:
                return f"construct {self.construct.value}"
            case UnitKind.UNSUPPORTED:
                return f"unsupported {self.reason}"
        return self.kind.value


def shell_units(facts: ShellFacts) -> list[Unit]:
    """Split *facts* into units, in a stable order."""
    units = [Unit(UnitKind.COMMAND, command=command) for command in facts.commands]
    units.extend(
        Unit(UnitKind.REDIRECT, redirect=redirect)
        for redirect in facts.redirects
        if not redirect.fd_duplicate
    )
    units.extend(Unit(UnitKind.HEREDOC, heredoc=heredoc) for heredoc in facts.heredocs)
    units.extend(
        Unit(UnitKind.CONSTRUCT, construct=construct)
        for construct in sorted(facts.constructs)
        if construct is not Construct.HEREDOC
    )
    units.extend(Unit(UnitKind.UNSUPPORTED, reason=reason) for reason in facts.unsupported)
    return units
