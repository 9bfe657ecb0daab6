"""cc-allow configuration schema.

Defines the validated model for one configuration layer (one TOML file).
The model is only the *schema*; :mod:`cc_allow.rules.compiler` turns a
validated :class:`LayerConfig` into an immutable
:class:`~cc_allow.rules.compiler.RuleSet` with parsed patterns and
pre-computed specificities.

Policy knobs are optional everywhere: an unset ``default`` means the layer
has no opinion, which is distinct from an explicit ``"ask"``.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

logger = logging.getLogger(__name__)

Action = Literal["allow", "deny", "ask"]

ACTIONS: tuple[str, ...] = ("allow", "deny", "ask")

# Keys of an action section that are not command names.
RESERVED_SECTION_KEYS = frozenset({"commands", "message"})

# Keys that mark a table as a command rule rather than a nesting level.
RESERVED_RULE_KEYS = frozenset({"message", "args", "pipe", "respect_file_rules", "file_access_type"})

RESERVED_ALIAS_PREFIXES = ("path:", "re:", "flags:", "flags[", "alias:", "ref:")

SUPPORTED_VERSION = (2, 0)

MAX_AGE_PATTERN = re.compile(r"(\d+)([dhm])")

FlexiblePattern = str | list[str]
MatchElement = str | dict[str, FlexiblePattern]


def _as_list(value: Any) -> Any:
    if isinstance(value, (str, dict)):
        return [value]
    return value


# ---------------------------------------------------------------------------
# Command rules
# ---------------------------------------------------------------------------

class ArgsTable(BaseModel):
    """Argument conditions of a command rule (``args`` table)."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    any: list[MatchElement] = Field(default_factory=list, description="At least one element matches.")
    all: list[MatchElement] = Field(default_factory=list, description="Every element matches.")
    not_: list[MatchElement] = Field(default_factory=list, alias="not", description="No element matches.")
    xor: list[MatchElement] = Field(default_factory=list, description="Exactly one element matches.")
    contains: list[str] = Field(default_factory=list, description="Substrings that must occur in some argument.")
    position: dict[str, FlexiblePattern] = Field(
        default_factory=dict,
        description="0-based argument index to a pattern or list of alternatives.",
    )

    @field_validator("any", "all", "not_", "xor", "contains", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return _as_list(value)

    @field_validator("position")
    @classmethod
    def _check_positions(cls, value: dict[str, FlexiblePattern]) -> dict[str, FlexiblePattern]:
        for key in value:
            if not key.isdigit():
                msg = f"position keys must be non-negative integers, got {key!r}"
                raise ValueError(msg)
        return value


class PipeTable(BaseModel):
    """Pipe-context conditions (``pipe`` table)."""

    model_config = ConfigDict(extra="forbid")

    to: list[str] = Field(default_factory=list)
    from_: list[str] = Field(default_factory=list, alias="from")

    @field_validator("to", "from_", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return _as_list(value)


class CommandRuleTable(BaseModel):
    """One ``[[bash.<action>.<command>...]]`` table."""

    model_config = ConfigDict(extra="forbid")

    message: str = ""
    args: ArgsTable = Field(default_factory=ArgsTable)
    pipe: PipeTable = Field(default_factory=PipeTable)
    respect_file_rules: bool | None = None
    file_access_type: Literal["read", "write", "edit"] | None = None

    @field_validator("file_access_type", mode="before")
    @classmethod
    def _lower_access_type(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ActionSection(BaseModel):
    """``[bash.allow]`` / ``[bash.deny]`` / ``[bash.ask]``.

    Besides the bulk ``commands`` list, every other key names a command
    whose rule tables may be nested by subcommand
    (``[[bash.deny.git.push]]``).
    """

    model_config = ConfigDict(extra="allow")

    commands: list[str] = Field(default_factory=list)
    message: str = ""

    _rules: list[tuple[tuple[str, ...], CommandRuleTable]] = PrivateAttr(default_factory=list)

    @model_validator(mode="after")
    def _collect_rules(self) -> ActionSection:
        rules: list[tuple[tuple[str, ...], CommandRuleTable]] = []
        for key, value in (self.model_extra or {}).items():
            rules.extend(_walk_rule_tables((key,), value))
        self._rules = rules
        return self

    @property
    def rules(self) -> list[tuple[tuple[str, ...], CommandRuleTable]]:
        """``(command_path, table)`` pairs in declaration order."""
        return self._rules


def _walk_rule_tables(path: tuple[str, ...], value: Any) -> Iterator[tuple[tuple[str, ...], CommandRuleTable]]:
    if isinstance(value, list):
        for item in value:
            if not isinstance(item, dict):
                msg = f"rule {'.'.join(path)} must be a table, got {type(item).__name__}"
                raise ValueError(msg)
            yield path, CommandRuleTable.model_validate(item)
    elif isinstance(value, dict):
        if not value or RESERVED_RULE_KEYS & value.keys():
            yield path, CommandRuleTable.model_validate(value)
            return
        for key, child in value.items():
            yield from _walk_rule_tables((*path, key), child)
    else:
        msg = f"unexpected value for {'.'.join(path)}: {type(value).__name__}"
        raise ValueError(msg)


# ---------------------------------------------------------------------------
# Redirects, heredocs, constructs
# ---------------------------------------------------------------------------

class RedirectRuleTable(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paths: list[str] = Field(default_factory=list)
    append: bool | None = None
    message: str = ""


class RedirectsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    respect_file_rules: bool = False
    allow: list[RedirectRuleTable] = Field(default_factory=list)
    deny: list[RedirectRuleTable] = Field(default_factory=list)
    ask: list[RedirectRuleTable] = Field(default_factory=list)


class HeredocRuleTable(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: list[str] = Field(default_factory=list)
    message: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return _as_list(value)


class HeredocsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allow: list[HeredocRuleTable] = Field(default_factory=list)
    deny: list[HeredocRuleTable] = Field(default_factory=list)
    ask: list[HeredocRuleTable] = Field(default_factory=list)


class ConstructsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subshells: Action | None = None
    function_definitions: Action | None = None
    background: Action | None = None
    heredocs: Action | None = None


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

class BashConfig(BaseModel):
    """The ``[bash]`` section."""

    model_config = ConfigDict(extra="forbid")

    default: Action | None = Field(default=None, description="Verdict when no rule matches; unset = no opinion.")
    dynamic_commands: Action | None = Field(
        default=None,
        description="Verdict for dynamic command names and redirect targets.",
    )
    unresolved_commands: Literal["ask", "deny"] | None = None
    default_message: str | None = None
    respect_file_rules: bool | None = None
    allowed_paths: list[str] = Field(
        default_factory=list,
        description="Ordered command search directories; empty means $PATH.",
    )
    constructs: ConstructsConfig = Field(default_factory=ConstructsConfig)
    allow: ActionSection = Field(default_factory=ActionSection)
    deny: ActionSection = Field(default_factory=ActionSection)
    ask: ActionSection = Field(default_factory=ActionSection)
    redirects: RedirectsConfig = Field(default_factory=RedirectsConfig)
    heredocs: HeredocsConfig = Field(default_factory=HeredocsConfig)


class PathList(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paths: list[str] = Field(default_factory=list)
    message: str = ""


class FileToolConfig(BaseModel):
    """``[read]`` / ``[write]`` / ``[edit]``."""

    model_config = ConfigDict(extra="forbid")

    default: Action | None = None
    allow: PathList = Field(default_factory=PathList)
    deny: PathList = Field(default_factory=PathList)


class SearchToolConfig(FileToolConfig):
    """``[glob]`` / ``[grep]``; delegates to ``[read]`` unless told otherwise."""

    respect_file_rules: bool = True


class SafeBrowsingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    api_key: str = ""
    timeout: float = Field(default=5.0, gt=0, le=60)


class WebFetchConfig(FileToolConfig):
    """``[webfetch]``; ``paths`` entries are matched against the raw URL."""

    default_message: str = ""
    safe_browsing: SafeBrowsingConfig = Field(default_factory=SafeBrowsingConfig)


class DebugConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_file: str = ""


class SettingsConfig(BaseModel):
    """``[settings]``: process-level knobs that are not rules."""

    model_config = ConfigDict(extra="forbid")

    session_max_age: str = ""

    @field_validator("session_max_age")
    @classmethod
    def _check_max_age(cls, value: str) -> str:
        if value and MAX_AGE_PATTERN.fullmatch(value) is None:
            msg = f"invalid session_max_age {value!r}: expected a number followed by d, h or m (e.g. \"7d\")"
            raise ValueError(msg)
        return value


# ---------------------------------------------------------------------------
# Layer
# ---------------------------------------------------------------------------

class LayerConfig(BaseModel):
    """One configuration layer, as decoded from TOML.

    Every section is optional, so an empty file is a valid layer with no
    opinion on anything.
    """

    model_config = ConfigDict(extra="forbid")

    version: str | None = None
    aliases: dict[str, FlexiblePattern] = Field(default_factory=dict)
    debug: DebugConfig = Field(default_factory=DebugConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    bash: BashConfig = Field(default_factory=BashConfig)
    read: FileToolConfig = Field(default_factory=FileToolConfig)
    write: FileToolConfig = Field(default_factory=FileToolConfig)
    edit: FileToolConfig = Field(default_factory=FileToolConfig)
    glob: SearchToolConfig = Field(default_factory=SearchToolConfig)
    grep: SearchToolConfig = Field(default_factory=SearchToolConfig)
    webfetch: WebFetchConfig = Field(default_factory=WebFetchConfig)

    @field_validator("aliases")
    @classmethod
    def _check_alias_names(cls, value: dict[str, FlexiblePattern]) -> dict[str, FlexiblePattern]:
        for name in value:
            if name.startswith(RESERVED_ALIAS_PREFIXES):
                msg = f"alias name {name!r} cannot start with a reserved prefix"
                raise ValueError(msg)
        return value

    @field_validator("version")
    @classmethod
    def _check_version_format(cls, value: str | None) -> str | None:
        if value is None:
            return value
        parts = value.split(".")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            msg = f"invalid version format {value!r}: expected major.minor (e.g. \"2.0\")"
            raise ValueError(msg)
        return value

    @property
    def version_tuple(self) -> tuple[int, int] | None:
        if self.version is None:
            return None
        major, minor = self.version.split(".")
        return int(major), int(minor)
