"""Per-layer rule evaluation.

:class:`LayerEvaluator` answers one question: what does *this* layer say
about *this* unit?  It never looks at another layer.  The answer is a
:class:`~cc_allow.core.types.LayerVerdict`, which is ``NO_OPINION`` when
nothing in the layer applied and the layer configures no default.

Shell command stages are evaluated in this order:

1. Dynamic command name: the ``dynamic_commands`` policy.
2. Resolve the name against the layer's ``allowed_paths``.
3. Unresolved with ``unresolved_commands = "deny"``: deny.
4. ``bash.deny.commands`` list: deny.
5. The most specific matching command rule.
6. ``bash.allow.commands`` list, then ``bash.ask.commands`` list.
7. Unresolved with ``unresolved_commands = "ask"``: ask.
8. ``bash.default``, else no opinion.

Whatever the command verdict, literal path-like arguments are then
checked against the layer's file deny rules when file-rule integration is
on, and a match turns the verdict into deny.

A construct the parser could not represent is denied when
``dynamic_commands = "deny"`` and asked otherwise; it is never allowed.

Among matching rules the highest specificity wins; ties break
deny > allow > ask, never by declaration order.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence

from cc_allow.core.errors import ExternalCheckError
from cc_allow.core.types import (
    ActionKind,
    CommandFacts,
    Construct,
    Heredoc,
    LayerVerdict,
    MatchedRule,
    Redirect,
    Verdict,
)
from cc_allow.matching import Pattern, PatternKind, PatternMatcher
from cc_allow.pathutil import is_path_like, resolve_path
from cc_allow.rules.compiler import (
    DEFAULT_FILE_MESSAGE,
    ArgElement,
    CommandRule,
    HeredocRule,
    PathPolicy,
    RedirectRule,
    RuleSet,
)
from cc_allow.rules.context import EvaluationContext
from cc_allow.rules.templates import TemplateContext, render
from cc_allow.rules.units import Unit, UnitKind

logger = logging.getLogger(__name__)

# Commands whose path arguments are written rather than read.
WRITER_COMMANDS: frozenset[str] = frozenset({
    "tee", "touch", "mkdir", "cp", "mv", "rm", "rmdir", "ln",
    "chmod", "chown", "truncate", "dd", "install",
})

DYNAMIC_COMMAND_MESSAGE = "Dynamic command names are not allowed"
DYNAMIC_REDIRECT_MESSAGE = "Dynamic redirect targets are not allowed"
UNRESOLVED_MESSAGE = "Command not found in allowed paths"
URL_DENIED_MESSAGE = "URL access denied"
UNSUPPORTED_DENY_MESSAGE = "Shell constructs that cannot be analyzed are not allowed"
UNSUPPORTED_ASK_MESSAGE = "Shell construct could not be analyzed"

_CONSTRUCT_MESSAGES: dict[Construct, tuple[str, str]] = {
    Construct.SUBSHELL: ("Subshells are not allowed", "Subshells need approval"),
    Construct.FUNCTION_DEFINITION: ("Function definitions are not allowed", "Function definitions need approval"),
    Construct.BACKGROUND: ("Background execution (&) is not allowed", "Background execution needs approval"),
    Construct.HEREDOC: ("Heredocs are not allowed", "Heredocs need approval"),
}


def _rank(rule: CommandRule | RedirectRule | HeredocRule) -> tuple[int, int]:
    return rule.specificity, rule.action.tie_priority


class LayerEvaluator:
    """Evaluates units and paths against one :class:`RuleSet`.

    Parameters
    ----------
    ruleset:
        The compiled layer.
    context:
        Per-request state (paths, resolver caches, URL checker).
    """

    def __init__(self, ruleset: RuleSet, context: EvaluationContext) -> None:
        self._rules = ruleset
        self._ctx = context
        self._matcher = PatternMatcher(context.path_vars, ruleset.references)

    @property
    def ruleset(self) -> RuleSet:
        return self._rules

    # -- public API ---------------------------------------------------------

    def evaluate_unit(self, unit: Unit) -> LayerVerdict:
        """Return this layer's verdict for one shell unit."""
        match unit.kind:
            case UnitKind.COMMAND:
                result = self._command(unit.command)
            case UnitKind.REDIRECT:
                result = self._redirect(unit.redirect)
            case UnitKind.HEREDOC:
                result = self._heredoc(unit.heredoc)
            case UnitKind.CONSTRUCT:
                result = self._construct(unit.construct)
            case UnitKind.UNSUPPORTED:
                result = self._unsupported()
        logger.debug(
            "[%s] %s -> %s (%s)",
            self._rules.scope.label,
            unit.label,
            result.verdict,
            result.matched_rule.location if result.matched_rule else "no rule",
        )
        return result

    def evaluate_path(self, kind: ActionKind, target: str) -> LayerVerdict:
        """Return this layer's verdict for a file or search action."""
        policy = self._rules.path_policy(kind)
        if kind.is_search:
            target = target or self._ctx.path_vars.cwd
            if policy.delegate_to_read:
                return self.evaluate_path(ActionKind.READ, target)
        resolved = self._resolve(target)
        return self._check_path(policy, resolved, tool=kind.tool_name)

    def evaluate_fetch(self, url: str) -> LayerVerdict:
        """Return this layer's verdict for fetching *url*."""
        fetch = self._rules.fetch
        policy = fetch.paths
        context = TemplateContext(url=url, tool=ActionKind.FETCH.tool_name, **self._env())

        denied = self._matcher.first_match(policy.deny, url)
        if denied is not None:
            message = policy.deny_message or fetch.default_message or URL_DENIED_MESSAGE
            return self._result(Verdict.DENY, render(message, context), "webfetch.deny.paths")
        if self._matcher.first_match(policy.allow, url) is not None:
            return self._result(Verdict.ALLOW, render(policy.allow_message, context), "webfetch.allow.paths")

        checker = self._ctx.url_checker(fetch.safe_browsing)
        if checker is not None:
            try:
                outcome = checker.check_url(url)
            except ExternalCheckError as exc:
                logger.warning("Safe Browsing check failed (%s); using webfetch default", exc.message)
            else:
                if not outcome.safe:
                    message = f"URL flagged by Safe Browsing ({outcome.threat_type})"
                    return self._result(Verdict.DENY, message, "webfetch.safe_browsing")

        if policy.default is not None:
            return self._result(policy.default, render(fetch.default_message, context), "webfetch.default")
        return self._no_opinion()

    # -- shell commands -----------------------------------------------------

    def _command(self, cmd: CommandFacts) -> LayerVerdict:
        shell = self._rules.shell
        if cmd.name.dynamic:
            return self._policy(shell.dynamic_commands, "bash.dynamic_commands", DYNAMIC_COMMAND_MESSAGE, "")

        resolution = self._ctx.resolve(cmd.name.text, shell.allowed_paths)
        context = self._command_context(cmd, resolution.path)
        if resolution.unresolved and shell.unresolved_commands is Verdict.DENY:
            return self._result(Verdict.DENY, UNRESOLVED_MESSAGE, "bash.unresolved_commands")

        result, rule = self._command_verdict(cmd, resolution.path, resolution.unresolved, context)
        if result.verdict is Verdict.DENY:
            return result
        file_denial = self._check_args_against_files(cmd, rule, context)
        return file_denial or result

    def _command_verdict(
        self,
        cmd: CommandFacts,
        resolved: str,
        unresolved: bool,
        context: TemplateContext,
    ) -> tuple[LayerVerdict, CommandRule | None]:
        shell = self._rules.shell
        name = cmd.name.text

        if self._command_listed(shell.deny_commands, name, resolved):
            message = render(shell.deny_message or shell.default_message, context)
            return self._result(Verdict.DENY, message, "bash.deny.commands"), None

        rule = self._best_rule(cmd, resolved)
        if rule is not None:
            message = rule.message or (shell.default_message if rule.action is Verdict.DENY else "")
            result = self._result(rule.action, render(message, context), rule.location, rule.specificity)
            return result, rule

        if self._command_listed(shell.allow_commands, name, resolved):
            return self._result(Verdict.ALLOW, render(shell.allow_message, context), "bash.allow.commands"), None
        if self._command_listed(shell.ask_commands, name, resolved):
            return self._result(Verdict.ASK, render(shell.ask_message, context), "bash.ask.commands"), None

        if unresolved and shell.unresolved_commands is Verdict.ASK:
            return self._result(Verdict.ASK, UNRESOLVED_MESSAGE, "bash.unresolved_commands"), None

        return self._policy(shell.default, "bash.default", render(shell.default_message, context), ""), None

    def _best_rule(self, cmd: CommandFacts, resolved: str) -> CommandRule | None:
        matches = [rule for rule in self._rules.shell.rules if self._rule_matches(rule, cmd, resolved)]
        if not matches:
            return None
        for rule in matches:
            logger.debug("  rule %s matched (specificity=%d, %s)", rule.location, rule.specificity, rule.action)
        return max(matches, key=_rank)

    def _rule_matches(self, rule: CommandRule, cmd: CommandFacts, resolved: str) -> bool:
        if rule.command is not None and not self._command_matches(rule.command, cmd.name.text, resolved):
            return False

        # Dynamic arguments are never trusted for matching.
        args: list[str | None] = [word.value for word in cmd.args]
        conditions = rule.args

        for needle in conditions.contains:
            if not any(arg is not None and needle in arg for arg in args):
                return False
        for index, alternatives in conditions.positions:
            if index >= len(args) or args[index] is None:
                return False
            if not self._matcher.match_any(alternatives, args[index]):
                return False
        if conditions.any and not any(self._element_matches(e, args) for e in conditions.any):
            return False
        if conditions.all and not all(self._element_matches(e, args) for e in conditions.all):
            return False
        if conditions.none:
            if None in args or any(self._element_matches(e, args) for e in conditions.none):
                return False
        if conditions.xor and sum(self._element_matches(e, args) for e in conditions.xor) != 1:
            return False

        if rule.pipe_to and not self._pipe_matches(rule.pipe_to, cmd.pipes_to):
            return False
        if rule.pipe_from_any and not cmd.pipes_from:
            return False
        if rule.pipe_from and not self._pipe_matches(rule.pipe_from, cmd.pipes_from):
            return False
        return True

    def _element_matches(self, element: ArgElement, args: Sequence[str | None]) -> bool:
        for start in range(len(args)):
            for offset, alternatives in element.steps:
                position = start + offset
                if position >= len(args) or args[position] is None:
                    break
                if not self._matcher.match_any(alternatives, args[position]):
                    break
            else:
                return True
        return False

    def _pipe_matches(self, patterns: Sequence[Pattern], names: Iterable[str]) -> bool:
        for name in names:
            if self._matcher.match_any(patterns, name):
                return True
            base = os.path.basename(name)
            if base != name and self._matcher.match_any(patterns, base):
                return True
        return False

    def _command_matches(self, pattern: Pattern, name: str, resolved: str) -> bool:
        if pattern.kind is PatternKind.PATH:
            return bool(resolved) and self._matcher.match_path(pattern, resolved)
        if self._matcher.match(pattern, name):
            return True
        return bool(resolved) and self._matcher.match(pattern, os.path.basename(resolved))

    def _command_listed(self, patterns: Sequence[Pattern], name: str, resolved: str) -> bool:
        return any(self._command_matches(p, name, resolved) for p in patterns)

    def _check_args_against_files(
        self,
        cmd: CommandFacts,
        rule: CommandRule | None,
        context: TemplateContext,
    ) -> LayerVerdict | None:
        shell = self._rules.shell
        respect = shell.respect_file_rules
        if rule is not None and rule.respect_file_rules is not None:
            respect = rule.respect_file_rules
        if not respect:
            return None

        if rule is not None and rule.file_access_type is not None:
            access = rule.file_access_type
        elif os.path.basename(cmd.name.text) in WRITER_COMMANDS:
            access = ActionKind.WRITE
        else:
            access = ActionKind.READ
        policy = self._rules.files[access]
        if not policy.deny:
            return None

        for word in cmd.args:
            if word.dynamic or not is_path_like(word.text):
                continue
            resolved = self._resolve(word.text)
            if self._first_path_match(policy.deny, resolved) is not None:
                file_context = TemplateContext(
                    command=context.command,
                    args=context.args,
                    resolved_path=context.resolved_path,
                    file_path=resolved,
                    tool=access.tool_name,
                    **self._env(),
                )
                message = render(policy.deny_message or DEFAULT_FILE_MESSAGE, file_context)
                logger.debug("  argument %r denied by %s.deny.paths", word.text, access.value)
                return self._result(Verdict.DENY, message, f"{access.value}.deny.paths")
        return None

    # -- redirects, heredocs, constructs ------------------------------------

    def _redirect(self, redirect: Redirect) -> LayerVerdict:
        shell = self._rules.shell
        if redirect.target.dynamic:
            return self._policy(shell.dynamic_commands, "bash.dynamic_commands", DYNAMIC_REDIRECT_MESSAGE, "")

        target = redirect.target.text
        context = TemplateContext(target=target, append=redirect.append, **self._env())
        matches = [rule for rule in shell.redirect_rules if self._redirect_matches(rule, redirect)]
        best = max(matches, key=_rank) if matches else None

        if shell.redirects_respect_file_rules:
            access = ActionKind.READ if redirect.is_input else ActionKind.WRITE
            file_result = self._check_path(self._rules.files[access], self._resolve(target), tool=access.tool_name)
            if file_result.verdict is Verdict.DENY:
                return file_result
            if best is None and file_result.verdict is not Verdict.NO_OPINION:
                return file_result

        if best is not None:
            message = best.message or (shell.default_message if best.action is Verdict.DENY else "")
            return self._result(best.action, render(message, context), best.location, best.specificity)
        return self._policy(shell.default, "bash.default", render(shell.default_message, context), "")

    def _redirect_matches(self, rule: RedirectRule, redirect: Redirect) -> bool:
        if rule.append is not None and rule.append != redirect.append:
            return False
        if rule.paths and not self._matcher.match_any(rule.paths, redirect.target.text):
            return False
        return True

    def _heredoc(self, heredoc: Heredoc) -> LayerVerdict:
        shell = self._rules.shell
        policy = shell.constructs.get(Construct.HEREDOC)
        if policy in (Verdict.DENY, Verdict.ASK):
            return self._construct(Construct.HEREDOC)

        context = TemplateContext(delimiter=heredoc.delimiter, body=heredoc.body, **self._env())
        matches = [
            rule
            for rule in shell.heredoc_rules
            if all(self._matcher.match(p, heredoc.body) for p in rule.content)
        ]
        if matches:
            best = max(matches, key=_rank)
            return self._result(best.action, render(best.message, context), best.location, best.specificity)
        if policy is Verdict.ALLOW:
            return self._result(Verdict.ALLOW, "", "bash.constructs.heredocs")
        return self._no_opinion()

    def _construct(self, construct: Construct) -> LayerVerdict:
        policy = self._rules.shell.constructs.get(construct)
        deny_message, ask_message = _CONSTRUCT_MESSAGES[construct]
        return self._policy(policy, f"bash.constructs.{construct.value}", deny_message, ask_message)

    def _unsupported(self) -> LayerVerdict:
        if self._rules.shell.dynamic_commands is Verdict.DENY:
            return self._result(Verdict.DENY, UNSUPPORTED_DENY_MESSAGE, "bash.dynamic_commands")
        return self._result(Verdict.ASK, UNSUPPORTED_ASK_MESSAGE, "bash.dynamic_commands")

    # -- paths --------------------------------------------------------------

    def _check_path(self, policy: PathPolicy, resolved: str, *, tool: str) -> LayerVerdict:
        name = policy.kind.value
        context = TemplateContext(file_path=resolved, tool=tool, **self._env())
        if self._first_path_match(policy.deny, resolved) is not None:
            message = render(policy.deny_message or DEFAULT_FILE_MESSAGE, context)
            return self._result(Verdict.DENY, message, f"{name}.deny.paths")
        if self._first_path_match(policy.allow, resolved) is not None:
            return self._result(Verdict.ALLOW, render(policy.allow_message, context), f"{name}.allow.paths")
        if policy.default is not None:
            message = (policy.deny_message or DEFAULT_FILE_MESSAGE) if policy.default is Verdict.DENY else ""
            return self._result(policy.default, render(message, context), f"{name}.default")
        return self._no_opinion()

    def _first_path_match(self, patterns: Sequence[Pattern], resolved: str) -> Pattern | None:
        for pattern in patterns:
            if self._matcher.match_path(pattern, resolved):
                return pattern
        return None

    def _resolve(self, path: str) -> str:
        pv = self._ctx.path_vars
        return resolve_path(path, pv.cwd, pv.home)

    # -- helpers ------------------------------------------------------------

    def _env(self) -> dict[str, str]:
        pv = self._ctx.path_vars
        return {"cwd": pv.cwd, "home": pv.home, "project_root": pv.project_root}

    def _command_context(self, cmd: CommandFacts, resolved: str) -> TemplateContext:
        return TemplateContext(
            command=cmd.name.text,
            args=tuple(cmd.arg_texts),
            resolved_path=resolved,
            pipes_to=cmd.pipes_to,
            pipes_from=cmd.pipes_from,
            tool=ActionKind.SHELL.tool_name,
            **self._env(),
        )

    def _policy(self, policy: Verdict | None, location: str, deny_message: str, ask_message: str) -> LayerVerdict:
        if policy is None:
            return self._no_opinion()
        message = {Verdict.DENY: deny_message, Verdict.ASK: ask_message}.get(policy, "")
        return self._result(policy, message, location)

    def _result(self, verdict: Verdict, message: str, location: str, specificity: int = 0) -> LayerVerdict:
        rule = MatchedRule(location=location, action=verdict, specificity=specificity, source=self._rules.source)
        return LayerVerdict(
            scope=self._rules.scope,
            verdict=verdict,
            message=message,
            matched_rule=rule,
            source=self._rules.source,
        )

    def _no_opinion(self) -> LayerVerdict:
        return LayerVerdict(scope=self._rules.scope, verdict=Verdict.NO_OPINION, source=self._rules.source)
