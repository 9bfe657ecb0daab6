"""cc-allow decision engine -- the main orchestrator.

This module implements :class:`DecisionEngine`, the entry point that turns
one requested action into a :class:`~cc_allow.core.types.Decision`.

Pipeline
--------

1. **Facts** -- shell input is parsed and reduced to
   :class:`~cc_allow.core.types.ShellFacts`; every other kind carries a
   single path or URL.  Parse errors propagate.
2. **Units** -- shell facts are split into independently decided units
   (command stages, redirects, heredocs, constructs).
3. **Per-layer evaluation** -- every layer evaluates every unit on its
   own, through a :class:`~cc_allow.rules.engine.LayerEvaluator`.
4. **Merge** -- per unit, deny > allow > ask > default (ask).
5. **Combine** -- across units, the strictest decision wins.

Usage
-----
::

    from cc_allow import ActionKind, DecisionEngine

    engine = DecisionEngine.from_environment(session_id="abc123")
    decision = engine.decide(ActionKind.SHELL, "git push --force")
    sys.exit(decision.exit_code)
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from cc_allow.core.errors import HomeUnavailable
from cc_allow.core.types import (
    ActionFacts,
    ActionKind,
    Decision,
    HookInput,
    LayerVerdict,
    Verdict,
)
from cc_allow.layers.discovery import discover_layers, load_layers
from cc_allow.layers.merge import combine_units, has_opinion, merge_layers
from cc_allow.pathutil import PathVars
from cc_allow.rules.context import EvaluationContext
from cc_allow.rules.engine import LayerEvaluator
from cc_allow.rules.units import UnitKind, shell_units
from cc_allow.shell import ShellExtractor

if TYPE_CHECKING:
    from cc_allow.core.interfaces import URLChecker
    from cc_allow.rules.compiler import RuleSet

logger = logging.getLogger(__name__)

NO_COMMAND_MESSAGE = "no command"
NO_FILE_PATH_MESSAGE = "no file path"
NO_URL_MESSAGE = "no URL"


class DecisionEngine:
    """Decides actions against an ordered chain of layers.

    The engine holds only immutable state (the compiled layers and the
    path variables); all mutable per-request state lives in a fresh
    :class:`~cc_allow.rules.context.EvaluationContext`, so one engine can
    serve concurrent requests.

    Parameters
    ----------
    layers:
        Compiled layers, loosest to most specific.
    path_vars:
        Working directory, ``$HOME`` and ``$PROJECT_ROOT``.  Defaults to
        the process environment.
    extractor:
        Shell fact extractor; defaults to the ``bashlex`` based one.
    url_checker:
        Reputation checker used for fetch actions whenever a layer
        enables Safe Browsing.  When omitted, a client is built from the
        layer's own ``api_key``.

    Raises
    ------
    HomeUnavailable
        If a layer uses ``$HOME`` in a pattern and no home is known.
    """

    def __init__(
        self,
        layers: Sequence[RuleSet],
        *,
        path_vars: PathVars | None = None,
        extractor: ShellExtractor | None = None,
        url_checker: URLChecker | None = None,
    ) -> None:
        self._layers = tuple(layers)
        self._path_vars = path_vars or PathVars.from_environment()
        self._extractor = extractor or ShellExtractor()
        self._url_checker = url_checker

        if not self._path_vars.home_set:
            offending = [r.source or r.scope.label for r in self._layers if r.uses_home]
            if offending:
                raise HomeUnavailable(details={"layers": offending})

    @classmethod
    def from_environment(
        cls,
        cwd: str | None = None,
        *,
        session_id: str = "",
        explicit: Sequence[str | Path] = (),
        env: Mapping[str, str] | None = None,
        url_checker: URLChecker | None = None,
    ) -> DecisionEngine:
        """Discover and load every layer that applies to *cwd*.

        Raises
        ------
        ConfigError
            If any discovered or explicit layer fails to load.
        """
        env = os.environ if env is None else env
        cwd = cwd or os.getcwd()
        home = os.path.realpath(env["HOME"]) if env.get("HOME") else ""
        paths = discover_layers(cwd, home=home, session_id=session_id, env=env)
        layers = load_layers(paths, explicit)
        path_vars = PathVars(
            cwd=cwd,
            home=home,
            project_root=os.path.realpath(paths.project_root) if paths.project_root else "",
        )
        return cls(layers, path_vars=path_vars, url_checker=url_checker)

    # ------------------------------------------------------------------
    # Properties for introspection
    # ------------------------------------------------------------------

    @property
    def layers(self) -> tuple[RuleSet, ...]:
        """The compiled layers, loosest first."""
        return self._layers

    @property
    def path_vars(self) -> PathVars:
        return self._path_vars

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def facts(self, kind: ActionKind, raw_input: str) -> ActionFacts:
        """Reduce *raw_input* to the rule-matchable facts for *kind*.

        Raises
        ------
        ParseError
            If *kind* is shell and the input cannot be parsed.
        """
        if kind is ActionKind.SHELL:
            return ActionFacts(kind=kind, shell=self._extractor.extract(raw_input))
        return ActionFacts(kind=kind, target=raw_input)

    def decide(self, kind: ActionKind, raw_input: str) -> Decision:
        """Decide one action.

        Parameters
        ----------
        kind:
            The action kind.
        raw_input:
            Shell text, a file or search path, or a URL.

        Returns
        -------
        Decision
            ``ALLOW``, ``DENY`` or ``ASK``, with the attributed message
            and matched rule.

        Raises
        ------
        ParseError
            For malformed shell input.  Never coerced into a verdict.
        """
        logger.debug("deciding %s %r against %d layer(s)", kind, raw_input, len(self._layers))
        match kind:
            case ActionKind.SHELL:
                if not raw_input.strip():
                    return Decision(verdict=Verdict.ASK, message=NO_COMMAND_MESSAGE)
                decision = self._decide_shell(self.facts(kind, raw_input))
            case ActionKind.READ | ActionKind.WRITE | ActionKind.EDIT:
                if not raw_input:
                    return Decision(verdict=Verdict.ASK, message=NO_FILE_PATH_MESSAGE)
                decision = self._decide_path(self.facts(kind, raw_input))
            case ActionKind.GLOB | ActionKind.GREP:
                decision = self._decide_path(self.facts(kind, raw_input))
            case ActionKind.FETCH:
                if not raw_input:
                    return Decision(verdict=Verdict.ASK, message=NO_URL_MESSAGE)
                decision = self._decide_fetch(self.facts(kind, raw_input))
        logger.debug(
            "decision: %s message=%r rule=%s scope=%s",
            decision.verdict,
            decision.message,
            decision.matched_rule.location if decision.matched_rule else None,
            decision.scope.label if decision.scope is not None else None,
        )
        return decision

    def decide_hook(self, hook: HookInput) -> Decision:
        """Decide a PreToolUse hook payload.

        An empty tool name is treated as ``Bash``; an unknown tool gives
        ``ASK``.
        """
        kind = ActionKind.from_tool_name(hook.tool_name or ActionKind.SHELL.tool_name)
        if kind is None:
            return Decision(verdict=Verdict.ASK, message=f"unknown tool: {hook.tool_name}")
        return self.decide(kind, hook.raw_input(kind))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _evaluators(self) -> list[LayerEvaluator]:
        context = EvaluationContext(self._path_vars, url_checker=self._url_checker)
        return [LayerEvaluator(ruleset, context) for ruleset in self._layers]

    def _decide_shell(self, facts: ActionFacts) -> Decision:
        evaluators = self._evaluators()
        decisions: list[Decision] = []
        for unit in shell_units(facts.shell):
            verdicts = [evaluator.evaluate_unit(unit) for evaluator in evaluators]
            # Heredoc bodies are data; with no opinion anywhere they do not count.
            if unit.kind is UnitKind.HEREDOC and not has_opinion(verdicts):
                logger.debug("dropping %s: no layer has an opinion", unit.label)
                continue
            decisions.append(merge_layers(verdicts, unit=unit.label))
        return combine_units(decisions)

    def _decide_path(self, facts: ActionFacts) -> Decision:
        verdicts: list[LayerVerdict] = [
            evaluator.evaluate_path(facts.kind, facts.target) for evaluator in self._evaluators()
        ]
        return merge_layers(verdicts, unit=f"{facts.kind} {facts.target}".rstrip())

    def _decide_fetch(self, facts: ActionFacts) -> Decision:
        verdicts = [evaluator.evaluate_fetch(facts.target) for evaluator in self._evaluators()]
        return merge_layers(verdicts, unit=f"fetch {facts.target}")
