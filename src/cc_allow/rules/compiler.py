"""Compile a validated :class:`~cc_allow.core.config.LayerConfig` into a RuleSet.

Compilation is the only place configuration text is interpreted.  It

* expands ``alias:`` patterns (recursively, cycle-checked),
* parses every pattern string into a :class:`~cc_allow.matching.Pattern`,
* builds the layer's flat :class:`~cc_allow.matching.ReferenceTable` and
  checks that every ``ref:`` used anywhere resolves,
* validates message templates,
* computes each rule's specificity once.

Everything produced here is frozen; a :class:`RuleSet` is safe to share
across concurrent evaluations without locking.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from cc_allow.core.config import (
    ACTIONS,
    ActionSection,
    ArgsTable,
    CommandRuleTable,
    FileToolConfig,
    LayerConfig,
    MatchElement,
    RedirectRuleTable,
    SearchToolConfig,
)
from cc_allow.core.errors import CyclicReference, InvalidPattern, UnresolvedReference
from cc_allow.core.types import ActionKind, Construct, LayerScope, Verdict
from cc_allow.matching import Pattern, PatternKind, ReferenceTable, parse_pattern
from cc_allow.rules.templates import check_template

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Specificity scores
# ---------------------------------------------------------------------------

SPECIFICITY_COMMAND = 100
SPECIFICITY_POSITION = 20
SPECIFICITY_CONTAINS = 10
SPECIFICITY_ARG_ELEMENT = 5
SPECIFICITY_PIPE_LITERAL = 10
SPECIFICITY_PIPE_PATTERN = 5
SPECIFICITY_REDIRECT_LITERAL = 10
SPECIFICITY_REDIRECT_PATTERN = 5
SPECIFICITY_APPEND = 5
SPECIFICITY_HEREDOC_CONTENT = 10

DEFAULT_SHELL_MESSAGE = "Command not allowed"
DEFAULT_FILE_MESSAGE = "File access denied"

_FILE_KINDS = (ActionKind.READ, ActionKind.WRITE, ActionKind.EDIT)
_SEARCH_KINDS = (ActionKind.GLOB, ActionKind.GREP)


# ---------------------------------------------------------------------------
# Compiled rule types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ArgElement:
    """One ``args.any/all/not/xor`` element.

    A plain pattern is a sequence of length one at offset 0.  A sequence
    table matches consecutive arguments starting at some index.
    """

    steps: tuple[tuple[int, tuple[Pattern, ...]], ...]


@dataclass(frozen=True, slots=True)
class ArgConditions:
    any: tuple[ArgElement, ...] = ()
    all: tuple[ArgElement, ...] = ()
    none: tuple[ArgElement, ...] = ()
    xor: tuple[ArgElement, ...] = ()
    contains: tuple[str, ...] = ()
    positions: tuple[tuple[int, tuple[Pattern, ...]], ...] = ()

    @property
    def patterns(self) -> list[Pattern]:
        found: list[Pattern] = []
        for element in (*self.any, *self.all, *self.none, *self.xor):
            for _, alternatives in element.steps:
                found.extend(alternatives)
        for _, alternatives in self.positions:
            found.extend(alternatives)
        return found


@dataclass(frozen=True, slots=True)
class CommandRule:
    """A compiled ``[[bash.<action>.<command>...]]`` rule.

    ``command`` is ``None`` for the ``*`` wildcard.
    """

    action: Verdict
    command: Pattern | None
    location: str
    args: ArgConditions = field(default_factory=ArgConditions)
    pipe_to: tuple[Pattern, ...] = ()
    pipe_from: tuple[Pattern, ...] = ()
    pipe_from_any: bool = False
    message: str = ""
    respect_file_rules: bool | None = None
    file_access_type: ActionKind | None = None
    specificity: int = 0


@dataclass(frozen=True, slots=True)
class RedirectRule:
    action: Verdict
    location: str
    paths: tuple[Pattern, ...] = ()
    append: bool | None = None
    message: str = ""
    specificity: int = 0


@dataclass(frozen=True, slots=True)
class HeredocRule:
    action: Verdict
    location: str
    content: tuple[Pattern, ...] = ()
    message: str = ""
    specificity: int = 0


@dataclass(frozen=True, slots=True)
class PathPolicy:
    """Allow/deny path lists for one non-shell action kind."""

    kind: ActionKind
    default: Verdict | None = None
    allow: tuple[Pattern, ...] = ()
    deny: tuple[Pattern, ...] = ()
    deny_message: str = ""
    allow_message: str = ""
    delegate_to_read: bool = False


@dataclass(frozen=True, slots=True)
class SafeBrowsingSettings:
    enabled: bool = False
    api_key: str = ""
    timeout: float = 5.0


@dataclass(frozen=True, slots=True)
class FetchPolicy:
    paths: PathPolicy
    default_message: str = ""
    safe_browsing: SafeBrowsingSettings = field(default_factory=SafeBrowsingSettings)


@dataclass(frozen=True, slots=True)
class ShellPolicy:
    """Everything one layer says about shell input."""

    default: Verdict | None = None
    dynamic_commands: Verdict | None = None
    unresolved_commands: Verdict | None = None
    default_message: str = DEFAULT_SHELL_MESSAGE
    respect_file_rules: bool = True
    allowed_paths: tuple[str, ...] = ()
    constructs: Mapping[Construct, Verdict | None] = field(default_factory=dict)
    allow_commands: tuple[Pattern, ...] = ()
    deny_commands: tuple[Pattern, ...] = ()
    ask_commands: tuple[Pattern, ...] = ()
    allow_message: str = ""
    deny_message: str = ""
    ask_message: str = ""
    rules: tuple[CommandRule, ...] = ()
    redirect_rules: tuple[RedirectRule, ...] = ()
    redirects_respect_file_rules: bool = False
    heredoc_rules: tuple[HeredocRule, ...] = ()


@dataclass(frozen=True, slots=True)
class RuleSet:
    """One configuration layer's compiled rules for every action kind."""

    scope: LayerScope
    source: str
    shell: ShellPolicy
    files: Mapping[ActionKind, PathPolicy]
    search: Mapping[ActionKind, PathPolicy]
    fetch: FetchPolicy
    references: ReferenceTable
    log_file: str = ""
    session_max_age: str = ""
    uses_home: bool = False

    def path_policy(self, kind: ActionKind) -> PathPolicy:
        if kind.is_file:
            return self.files[kind]
        if kind.is_search:
            return self.search[kind]
        if kind is ActionKind.FETCH:
            return self.fetch.paths
        msg = f"no path policy for action kind {kind}"
        raise ValueError(msg)


def empty_ruleset(scope: LayerScope = LayerScope.GLOBAL, source: str = "(empty)") -> RuleSet:
    """A layer with no opinion on anything."""
    return compile_layer(LayerConfig(), scope=scope, source=source)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------

def compile_layer(config: LayerConfig, *, scope: LayerScope, source: str = "") -> RuleSet:
    """Compile *config* into a :class:`RuleSet`.

    Raises
    ------
    InvalidPattern
        A pattern string is malformed.
    UnresolvedReference
        An ``alias:`` or ``ref:`` names something that does not exist.
    CyclicReference
        Aliases or references form a cycle.
    InvalidConfig
        A message template is invalid.
    """
    compiler = _Compiler(config, source)
    ruleset = compiler.compile(scope)
    logger.debug(
        "compiled %s layer %s: %d command rule(s), %d redirect rule(s), %d heredoc rule(s)",
        scope.label,
        source or "(inline)",
        len(ruleset.shell.rules),
        len(ruleset.shell.redirect_rules),
        len(ruleset.shell.heredoc_rules),
    )
    return ruleset


class _Compiler:
    def __init__(self, config: LayerConfig, source: str) -> None:
        self._config = config
        self._source = source
        self._aliases = {
            name: [value] if isinstance(value, str) else list(value)
            for name, value in config.aliases.items()
        }
        self._alias_cache: dict[str, list[str]] = {}
        self._used_refs: list[tuple[str, str]] = []
        self._uses_home = False

    def compile(self, scope: LayerScope) -> RuleSet:
        references = self._build_references()
        shell = self._shell()
        files = {kind: self._path_policy(kind, self._file_config(kind)) for kind in _FILE_KINDS}
        search = {kind: self._path_policy(kind, self._file_config(kind)) for kind in _SEARCH_KINDS}
        fetch = self._fetch()
        for key, location in self._used_refs:
            references.require(key, location=location)
        return RuleSet(
            scope=scope,
            source=self._source,
            shell=shell,
            files=MappingProxyType(files),
            search=MappingProxyType(search),
            fetch=fetch,
            references=references,
            log_file=self._config.debug.log_file,
            session_max_age=self._config.settings.session_max_age,
            uses_home=self._uses_home,
        )

    # -- aliases and patterns -----------------------------------------------

    def _expand(self, raws: Iterable[str], location: str) -> list[str]:
        expanded: list[str] = []
        for raw in raws:
            if raw.startswith("alias:"):
                expanded.extend(self._expand_alias(raw[len("alias:"):], (), location))
            else:
                expanded.append(raw)
        return expanded

    def _expand_alias(self, name: str, trail: tuple[str, ...], location: str) -> list[str]:
        if name in self._alias_cache:
            return self._alias_cache[name]
        if name in trail:
            cycle = [*trail[trail.index(name):], name]
            raise CyclicReference(f"cyclic alias: {' -> '.join(cycle)}", details={"cycle": cycle})
        if name not in self._aliases:
            raise UnresolvedReference(
                f"undefined alias {name!r} at {location}",
                details={"alias": name, "location": location},
            )
        result: list[str] = []
        for raw in self._aliases[name]:
            if raw.startswith("alias:"):
                result.extend(self._expand_alias(raw[len("alias:"):], (*trail, name), location))
            else:
                result.append(raw)
        self._alias_cache[name] = result
        return result

    def _patterns(self, raws: Iterable[str], location: str) -> tuple[Pattern, ...]:
        patterns = []
        for index, raw in enumerate(self._expand(raws, location)):
            patterns.append(self._pattern(raw, f"{location}[{index}]"))
        return tuple(patterns)

    def _pattern(self, raw: str, location: str) -> Pattern:
        try:
            pattern = parse_pattern(raw)
        except InvalidPattern as exc:
            raise InvalidPattern(
                f"{location}: {exc.message}",
                details={**exc.details, "location": location, "source": self._source},
            ) from exc
        if "$HOME" in raw:
            self._uses_home = True
        if pattern.kind is PatternKind.REF:
            self._used_refs.append((pattern.body, location))
        return pattern

    def _message(self, text: str, location: str) -> str:
        return check_template(text, location=location) if text else ""

    def _build_references(self) -> ReferenceTable:
        cfg = self._config
        sources: dict[str, list[str]] = {}
        for kind in (*_FILE_KINDS, *_SEARCH_KINDS):
            tool = self._file_config(kind)
            name = kind.value
            sources[f"{name}.allow.paths"] = self._expand(tool.allow.paths, f"{name}.allow.paths")
            sources[f"{name}.deny.paths"] = self._expand(tool.deny.paths, f"{name}.deny.paths")
        for action in ACTIONS:
            commands = getattr(cfg.bash, action).commands
            sources[f"bash.{action}.commands"] = self._expand(commands, f"bash.{action}.commands")
        sources["webfetch.allow.paths"] = self._expand(cfg.webfetch.allow.paths, "webfetch.allow.paths")
        sources["webfetch.deny.paths"] = self._expand(cfg.webfetch.deny.paths, "webfetch.deny.paths")
        for name in self._aliases:
            sources[f"aliases.{name}"] = self._expand_alias(name, (), f"aliases.{name}")
        return ReferenceTable.build(sources)

    # -- sections -----------------------------------------------------------

    def _file_config(self, kind: ActionKind) -> FileToolConfig:
        return getattr(self._config, kind.value)

    def _path_policy(self, kind: ActionKind, section: FileToolConfig) -> PathPolicy:
        name = kind.value if kind is not ActionKind.FETCH else "webfetch"
        delegate = isinstance(section, SearchToolConfig) and section.respect_file_rules
        return PathPolicy(
            kind=kind,
            default=_verdict(section.default),
            allow=self._patterns(section.allow.paths, f"{name}.allow.paths"),
            deny=self._patterns(section.deny.paths, f"{name}.deny.paths"),
            deny_message=self._message(section.deny.message, f"{name}.deny.message"),
            allow_message=self._message(section.allow.message, f"{name}.allow.message"),
            delegate_to_read=delegate,
        )

    def _fetch(self) -> FetchPolicy:
        section = self._config.webfetch
        sb = section.safe_browsing
        return FetchPolicy(
            paths=self._path_policy(ActionKind.FETCH, section),
            default_message=self._message(section.default_message, "webfetch.default_message"),
            safe_browsing=SafeBrowsingSettings(enabled=sb.enabled, api_key=sb.api_key, timeout=sb.timeout),
        )

    def _shell(self) -> ShellPolicy:
        bash = self._config.bash
        rules: list[CommandRule] = []
        for action in ACTIONS:
            section: ActionSection = getattr(bash, action)
            for index, (path, table) in enumerate(section.rules):
                location = f"bash.{action}.{'.'.join(path)}[{index}]"
                rules.append(self._command_rule(Verdict(action), path, table, location))

        redirect_rules = [
            self._redirect_rule(Verdict(action), table, f"bash.redirects.{action}[{index}]")
            for action in ACTIONS
            for index, table in enumerate(getattr(bash.redirects, action))
        ]
        heredoc_rules = [
            self._heredoc_rule(Verdict(action), table.content, table.message, f"bash.heredocs.{action}[{index}]")
            for action in ACTIONS
            for index, table in enumerate(getattr(bash.heredocs, action))
        ]
        constructs = {
            Construct.SUBSHELL: _verdict(bash.constructs.subshells),
            Construct.FUNCTION_DEFINITION: _verdict(bash.constructs.function_definitions),
            Construct.BACKGROUND: _verdict(bash.constructs.background),
            Construct.HEREDOC: _verdict(bash.constructs.heredocs),
        }
        return ShellPolicy(
            default=_verdict(bash.default),
            dynamic_commands=_verdict(bash.dynamic_commands),
            unresolved_commands=_verdict(bash.unresolved_commands),
            default_message=self._message(bash.default_message or DEFAULT_SHELL_MESSAGE, "bash.default_message"),
            respect_file_rules=True if bash.respect_file_rules is None else bash.respect_file_rules,
            allowed_paths=tuple(bash.allowed_paths),
            constructs=MappingProxyType(constructs),
            allow_commands=self._patterns(bash.allow.commands, "bash.allow.commands"),
            deny_commands=self._patterns(bash.deny.commands, "bash.deny.commands"),
            ask_commands=self._patterns(bash.ask.commands, "bash.ask.commands"),
            allow_message=self._message(bash.allow.message, "bash.allow.message"),
            deny_message=self._message(bash.deny.message, "bash.deny.message"),
            ask_message=self._message(bash.ask.message, "bash.ask.message"),
            rules=tuple(rules),
            redirect_rules=tuple(redirect_rules),
            redirects_respect_file_rules=bash.redirects.respect_file_rules,
            heredoc_rules=tuple(heredoc_rules),
        )

    # -- rules --------------------------------------------------------------

    def _command_rule(
        self,
        action: Verdict,
        path: tuple[str, ...],
        table: CommandRuleTable,
        location: str,
    ) -> CommandRule:
        head, subcommands = path[0], path[1:]
        command = None if head == "*" else self._pattern(head, f"{location}.command")
        args = self._args(table.args, subcommands, location)
        pipe_to = self._patterns(table.pipe.to, f"{location}.pipe.to")
        pipe_from_any = "*" in table.pipe.from_
        pipe_from = self._patterns([p for p in table.pipe.from_ if p != "*"], f"{location}.pipe.from")
        access = ActionKind(table.file_access_type) if table.file_access_type else None

        score = SPECIFICITY_COMMAND if command is not None and command.is_literal else 0
        score += len(args.positions) * SPECIFICITY_POSITION
        score += len(args.contains) * SPECIFICITY_CONTAINS
        score += (len(args.any) + len(args.all) + len(args.none) + len(args.xor)) * SPECIFICITY_ARG_ELEMENT
        for pattern in (*pipe_to, *pipe_from):
            score += SPECIFICITY_PIPE_LITERAL if pattern.is_literal else SPECIFICITY_PIPE_PATTERN
        if pipe_from_any:
            score += SPECIFICITY_PIPE_PATTERN

        return CommandRule(
            action=action,
            command=command,
            location=location,
            args=args,
            pipe_to=pipe_to,
            pipe_from=pipe_from,
            pipe_from_any=pipe_from_any,
            message=self._message(table.message, f"{location}.message"),
            respect_file_rules=table.respect_file_rules,
            file_access_type=access,
            specificity=score,
        )

    def _args(self, table: ArgsTable, subcommands: Sequence[str], location: str) -> ArgConditions:
        positions: list[tuple[int, tuple[Pattern, ...]]] = [
            (index, (self._pattern(name, f"{location}.subcommand[{index}]"),))
            for index, name in enumerate(subcommands)
        ]
        for key in sorted(table.position, key=int):
            value = table.position[key]
            raws = [value] if isinstance(value, str) else value
            positions.append((int(key), self._patterns(raws, f"{location}.args.position.{key}")))
        return ArgConditions(
            any=self._elements(table.any, f"{location}.args.any"),
            all=self._elements(table.all, f"{location}.args.all"),
            none=self._elements(table.not_, f"{location}.args.not"),
            xor=self._elements(table.xor, f"{location}.args.xor"),
            contains=tuple(self._expand(table.contains, f"{location}.args.contains")),
            positions=tuple(positions),
        )

    def _elements(self, raws: Sequence[MatchElement], location: str) -> tuple[ArgElement, ...]:
        elements: list[ArgElement] = []
        for index, raw in enumerate(raws):
            where = f"{location}[{index}]"
            if isinstance(raw, str):
                # an alias may expand to several patterns; they stay alternatives
                elements.append(ArgElement(steps=((0, self._patterns([raw], where)),)))
                continue
            steps = []
            for key in sorted(raw, key=_offset_key(where)):
                value = raw[key]
                alternatives = [value] if isinstance(value, str) else value
                steps.append((int(key), self._patterns(alternatives, f"{where}.{key}")))
            elements.append(ArgElement(steps=tuple(steps)))
        return tuple(elements)

    def _redirect_rule(self, action: Verdict, table: RedirectRuleTable, location: str) -> RedirectRule:
        paths = self._patterns(table.paths, f"{location}.paths")
        score = sum(SPECIFICITY_REDIRECT_LITERAL if p.is_literal else SPECIFICITY_REDIRECT_PATTERN for p in paths)
        if table.append is not None:
            score += SPECIFICITY_APPEND
        return RedirectRule(
            action=action,
            location=location,
            paths=paths,
            append=table.append,
            message=self._message(table.message, f"{location}.message"),
            specificity=score,
        )

    def _heredoc_rule(self, action: Verdict, content: Sequence[str], message: str, location: str) -> HeredocRule:
        patterns = self._patterns(content, f"{location}.content")
        return HeredocRule(
            action=action,
            location=location,
            content=patterns,
            message=self._message(message, f"{location}.message"),
            specificity=len(patterns) * SPECIFICITY_HEREDOC_CONTENT,
        )


def _verdict(value: str | None) -> Verdict | None:
    return Verdict(value) if value is not None else None


def _offset_key(location: str):
    def _key(value: str) -> int:
        if not value.isdigit():
            raise InvalidPattern(
                f"{location}: sequence keys must be non-negative integers, got {value!r}",
                details={"location": location},
            )
        return int(value)

    return _key
