"""cc-allow shared domain types.

This module defines the value types and enums shared across the engine.
Everything here is created per request (facts, verdicts, decisions) and
discarded after use; nothing holds references to configuration state.

Key design decisions:
* Enums use *string* values so they serialise cleanly to JSON and match
  the words used in configuration files.
* Facts are frozen, slotted dataclasses.  A shell word is a tagged
  :class:`Word` (literal vs. dynamic) rather than a string with a
  sentinel, so "resolved to empty" is never confused with "unresolvable".
* The hook payload is a Pydantic model because it crosses the process
  boundary as JSON.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ActionKind(enum.StrEnum):
    """The closed set of action kinds the engine can decide on."""

    SHELL = "shell"
    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    GLOB = "glob"
    GREP = "grep"
    FETCH = "fetch"

    @classmethod
    def from_tool_name(cls, tool_name: str) -> ActionKind | None:
        """Map a host tool name (``Bash``, ``Read``...) to an action kind."""
        return _TOOL_NAMES.get(tool_name)

    @property
    def tool_name(self) -> str:
        """The host tool name for this kind (``Read``, ``Bash``...)."""
        return next(name for name, kind in _TOOL_NAMES.items() if kind is self)

    @property
    def is_file(self) -> bool:
        return self in (ActionKind.READ, ActionKind.WRITE, ActionKind.EDIT)

    @property
    def is_search(self) -> bool:
        return self in (ActionKind.GLOB, ActionKind.GREP)


_TOOL_NAMES: dict[str, ActionKind] = {
    "Bash": ActionKind.SHELL,
    "Read": ActionKind.READ,
    "Write": ActionKind.WRITE,
    "Edit": ActionKind.EDIT,
    "Glob": ActionKind.GLOB,
    "Grep": ActionKind.GREP,
    "WebFetch": ActionKind.FETCH,
}


class ExitCode(enum.IntEnum):
    """Process exit status for each outcome."""

    ALLOW = 0
    ASK = 1
    DENY = 2
    ERROR = 3


class Verdict(enum.StrEnum):
    """One layer's (or one rule's) outcome.

    ``NO_OPINION`` means nothing in a layer applied; it is distinct from
    an explicit ``ASK`` and never appears in a final :class:`Decision`.
    """

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"
    NO_OPINION = "no_opinion"

    @property
    def strictness(self) -> int:
        """Order used when combining several units: deny > ask > allow."""
        return _STRICTNESS[self]

    @property
    def tie_priority(self) -> int:
        """Order used between equally specific rules: deny > allow > ask."""
        return _TIE_PRIORITY[self]

    @property
    def exit_code(self) -> ExitCode:
        if self is Verdict.NO_OPINION:
            msg = "NO_OPINION has no exit code; merge layers first"
            raise ValueError(msg)
        return ExitCode[self.name]

    @classmethod
    def strictest(cls, verdicts: list[Verdict]) -> Verdict:
        """Return the strictest verdict, or ``NO_OPINION`` for an empty list."""
        return max(verdicts, key=lambda v: v.strictness, default=cls.NO_OPINION)


_STRICTNESS: dict[Verdict, int] = {
    Verdict.DENY: 3,
    Verdict.ASK: 2,
    Verdict.ALLOW: 1,
    Verdict.NO_OPINION: 0,
}

_TIE_PRIORITY: dict[Verdict, int] = {
    Verdict.DENY: 3,
    Verdict.ALLOW: 2,
    Verdict.ASK: 1,
    Verdict.NO_OPINION: 0,
}


class LayerScope(enum.IntEnum):
    """Configuration layers, loosest to most specific."""

    GLOBAL = 0
    PROJECT = 1
    LOCAL = 2
    SESSION = 3
    EXPLICIT = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class Construct(enum.StrEnum):
    """Shell constructs with their own policy knob (``[bash.constructs]``)."""

    SUBSHELL = "subshells"
    FUNCTION_DEFINITION = "function_definitions"
    BACKGROUND = "background"
    HEREDOC = "heredocs"


# ---------------------------------------------------------------------------
# Shell facts
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Word:
    """A shell word reduced to a string.

    Attributes
    ----------
    text:
        The decoded text.  For dynamic words this is a best-effort
        rendering kept for display only.
    dynamic:
        ``True`` when any part of the word is a variable expansion or a
        command/process substitution.
    """

    text: str
    dynamic: bool = False

    @classmethod
    def literal(cls, text: str) -> Word:
        return cls(text=text, dynamic=False)

    @property
    def value(self) -> str | None:
        """The literal text, or ``None`` when the word cannot be trusted."""
        return None if self.dynamic else self.text


@dataclass(frozen=True, slots=True)
class Redirect:
    """A redirect attached to a command or compound statement.

    Attributes
    ----------
    operator:
        The operator as written (``>``, ``>>``, ``<``, ``&>``, ``>&`` ...).
    target:
        The target word.  For descriptor duplications (``2>&1``) this is
        the descriptor number.
    fd:
        The redirected descriptor; 1 for output operators and 0 for input
        operators unless written explicitly.
    append:
        ``True`` for ``>>``.
    fd_duplicate:
        ``True`` for ``N>&M`` / ``N<&M`` which touch no file.
    """

    operator: str
    target: Word
    fd: int
    append: bool = False
    fd_duplicate: bool = False

    @property
    def is_input(self) -> bool:
        return self.operator.startswith("<")


@dataclass(frozen=True, slots=True)
class Heredoc:
    """A heredoc (``<<EOF``) or here-string (``<<<``) body."""

    body: str
    delimiter: str = ""
    here_string: bool = False
    dynamic: bool = False


@dataclass(frozen=True, slots=True)
class CommandFacts:
    """One simple command (one pipeline stage).

    Attributes
    ----------
    name:
        The command-name word.
    args:
        Positional argument words, command name excluded.
    assignments:
        ``NAME=value`` prefixes, captured apart from the arguments.
    pipes_from:
        Literal names of every upstream stage in the same pipeline.
    pipes_to:
        Literal names of every downstream stage in the same pipeline.
    nested:
        ``True`` when the command came from ``$(...)`` or ``<(...)``.
    """

    name: Word
    args: tuple[Word, ...] = ()
    assignments: tuple[str, ...] = ()
    pipes_from: tuple[str, ...] = ()
    pipes_to: tuple[str, ...] = ()
    nested: bool = False

    @property
    def arg_texts(self) -> list[str]:
        return [a.text for a in self.args]


@dataclass(frozen=True, slots=True)
class Pipeline:
    """Pipe-connected stages in left-to-right order."""

    stages: tuple[CommandFacts, ...]


@dataclass(frozen=True, slots=True)
class ShellFacts:
    """Everything extracted from one shell input.

    ``&&`` / ``||`` / ``;`` separated statements each contribute their own
    :class:`Pipeline`; no data flow is tracked between them.  Constructs the
    parser could not represent are named in :attr:`unsupported`.
    """

    pipelines: tuple[Pipeline, ...] = ()
    redirects: tuple[Redirect, ...] = ()
    heredocs: tuple[Heredoc, ...] = ()
    constructs: frozenset[Construct] = frozenset()
    unsupported: tuple[str, ...] = ()

    @property
    def commands(self) -> list[CommandFacts]:
        return [stage for pipeline in self.pipelines for stage in pipeline.stages]


@dataclass(frozen=True, slots=True)
class ActionFacts:
    """The rule-matchable representation of one requested action.

    Shell actions carry :attr:`shell`; every other kind carries a single
    path or URL in :attr:`target`.
    """

    kind: ActionKind
    target: str = ""
    shell: ShellFacts | None = None

    def __post_init__(self) -> None:
        if (self.kind is ActionKind.SHELL) != (self.shell is not None):
            msg = f"shell facts must be present exactly for shell actions (kind={self.kind})"
            raise ValueError(msg)


# ---------------------------------------------------------------------------
# Verdicts and decisions
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class MatchedRule:
    """Identifies the configuration entry that produced a verdict."""

    location: str
    action: Verdict
    specificity: int = 0
    source: str = ""


@dataclass(frozen=True, slots=True)
class LayerVerdict:
    """The fully resolved verdict of one layer for one unit."""

    scope: LayerScope
    verdict: Verdict
    message: str = ""
    matched_rule: MatchedRule | None = None
    source: str = ""


@dataclass(frozen=True, slots=True)
class Decision:
    """The final merged outcome handed back to the caller.

    Attributes
    ----------
    verdict:
        ``ALLOW``, ``DENY`` or ``ASK``; never ``NO_OPINION``.
    message:
        Attributed, rendered message (may be empty).
    matched_rule:
        The rule that produced the verdict, if any.
    scope:
        The layer the verdict was attributed to, if any.
    unit:
        Short description of the unit that decided (e.g. ``command rm``).
    layers:
        Per-layer verdicts that fed the merge, for diagnostics.
    """

    verdict: Verdict
    message: str = ""
    matched_rule: MatchedRule | None = None
    scope: LayerScope | None = None
    unit: str = ""
    layers: tuple[LayerVerdict, ...] = field(default=())

    @property
    def exit_code(self) -> ExitCode:
        return self.verdict.exit_code


# ---------------------------------------------------------------------------
# Hook payload
# ---------------------------------------------------------------------------

class ToolInput(BaseModel):
    """The ``tool_input`` object of a PreToolUse hook payload."""

    model_config = ConfigDict(extra="ignore")

    command: str = ""
    file_path: str = ""
    url: str = ""
    path: str = ""
    pattern: str = ""
    prompt: str = ""


class HookInput(BaseModel):
    """PreToolUse hook payload as received on stdin."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = ""
    tool_name: str = ""
    tool_input: ToolInput = Field(default_factory=ToolInput)

    def raw_input(self, kind: ActionKind) -> str:
        """Return the field of :attr:`tool_input` relevant to *kind*."""
        match kind:
            case ActionKind.SHELL:
                return self.tool_input.command
            case ActionKind.READ | ActionKind.WRITE | ActionKind.EDIT:
                return self.tool_input.file_path
            case ActionKind.GLOB | ActionKind.GREP:
                return self.tool_input.path
            case ActionKind.FETCH:
                return self.tool_input.url


class HookSpecificOutput(BaseModel):
    """The ``hookSpecificOutput`` object of a PreToolUse hook response."""

    model_config = ConfigDict(populate_by_name=True)

    hook_event_name: str = Field(default="PreToolUse", alias="hookEventName")
    permission_decision: Verdict = Field(alias="permissionDecision")
    permission_decision_reason: str = Field(default="", alias="permissionDecisionReason")


class HookOutput(BaseModel):
    """PreToolUse hook response written to stdout."""

    model_config = ConfigDict(populate_by_name=True)

    hook_specific_output: HookSpecificOutput = Field(alias="hookSpecificOutput")
