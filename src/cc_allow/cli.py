"""cc-allow command line and PreToolUse hook entry point.

Plain mode reads the input from the positional argument (or stdin) and
reports through the exit status:

====  ===========================================
0     allow
1     ask
2     deny
3     parse or configuration error
====  ===========================================

Hook mode (``--hook``) reads the PreToolUse JSON payload from stdin,
writes a ``hookSpecificOutput`` JSON object to stdout and exits 0
whatever the verdict; errors still exit 3.

``--fmt`` loads and validates every applicable layer, then lists its rules
by descending specificity; it exits 0, or 3 when a layer is invalid.
"""
from __future__ import annotations

import logging
import os
import sys
import tempfile
from collections.abc import Sequence
from pathlib import Path

import typer
from pydantic import ValidationError

from cc_allow import __version__
from cc_allow.core.errors import CCAllowError
from cc_allow.core.types import (
    ActionKind,
    Decision,
    ExitCode,
    HookInput,
    HookOutput,
    HookSpecificOutput,
    Verdict,
)
from cc_allow.engine import DecisionEngine
from cc_allow.layers import cleanup_sessions
from cc_allow.rules import RuleSet

logger = logging.getLogger("cc_allow")

ALLOWED_REASON = "Allowed by cc-allow policy"
DENIED_REASON = "Denied by cc-allow policy"
NO_MATCH_REASON = "No cc-allow rules matched"
DEFAULT_LOG_NAME = "cc-allow.log"

app = typer.Typer(
    add_completion=False,
    help="Decide whether an agent tool call is allowed, denied or needs approval.",
)


# ============================================================================
# Output
# ============================================================================

def hook_reason(decision: Decision) -> str:
    """The ``permissionDecisionReason`` for *decision*."""
    if decision.verdict is Verdict.ALLOW:
        return ALLOWED_REASON
    if decision.verdict is Verdict.DENY:
        return decision.message or DENIED_REASON
    reason = decision.message or NO_MATCH_REASON
    return f"{decision.unit}: {reason}" if decision.unit else reason


def hook_output(decision: Decision) -> HookOutput:
    return HookOutput(
        hook_specific_output=HookSpecificOutput(
            permission_decision=decision.verdict,
            permission_decision_reason=hook_reason(decision),
        )
    )


def _report_plain(decision: Decision) -> None:
    if decision.verdict is Verdict.DENY:
        message = decision.message or DENIED_REASON
        if decision.matched_rule is not None:
            message = f"{message} ({decision.matched_rule.location})"
        typer.echo(f"Deny: {message}", err=True)
    elif decision.verdict is Verdict.ASK:
        reason = decision.message or NO_MATCH_REASON
        typer.echo(f"Ask: {decision.unit}: {reason}" if decision.unit else f"Ask: {reason}", err=True)


def format_layers(layers: Sequence[RuleSet]) -> str:
    """Summarize *layers* and list their rules by descending specificity.

    Equal specificity keeps layer order, loosest layer first.
    """
    lines = ["Config Files", "============"]
    for index, layer in enumerate(layers, start=1):
        shell = layer.shell
        lines.append("")
        lines.append(f"[{index}] {layer.scope.label}: {layer.source}")
        if shell.default is not None:
            lines.append(f"    bash.default = {shell.default.value!r}")
        if shell.dynamic_commands is not None:
            lines.append(f"    bash.dynamic_commands = {shell.dynamic_commands.value!r}")
        lines.append(
            f"    {len(shell.rules)} rule(s), {len(shell.redirect_rules)} redirect(s), "
            f"{len(shell.heredoc_rules)} heredoc(s)"
        )

    sections = (
        ("Command Rules", [(rule, layer) for layer in layers for rule in layer.shell.rules]),
        ("Redirect Rules", [(rule, layer) for layer in layers for rule in layer.shell.redirect_rules]),
        ("Heredoc Rules", [(rule, layer) for layer in layers for rule in layer.shell.heredoc_rules]),
    )
    for title, entries in sections:
        if not entries:
            continue
        heading = f"{title} (by specificity)"
        lines.extend(["", "", heading, "=" * len(heading)])
        for rule, layer in sorted(entries, key=lambda entry: -entry[0].specificity):
            lines.append("")
            lines.append(f"[{rule.specificity}] {rule.action.value} {rule.location}")
            lines.append(f"    source: {layer.source}")

    lines.extend(["", "", "Validation passed."])
    return "\n".join(lines)


# ============================================================================
# Logging
# ============================================================================

def _configure_logging(debug: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[cc-allow] %(levelname)s %(name)s: %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


def _debug_log_path(engine: DecisionEngine) -> str:
    for layer in engine.layers:
        if layer.log_file:
            return engine.path_vars.expand(layer.log_file)
    return os.path.join(tempfile.gettempdir(), DEFAULT_LOG_NAME)


def _attach_log_file(path: str) -> None:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s [cc-allow] %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.debug("debug log file: %s", path)


# ============================================================================
# Commands
# ============================================================================

def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cc-allow {__version__}")
        raise typer.Exit()


def _cleanup(engine: DecisionEngine) -> None:
    max_age = next((layer.session_max_age for layer in reversed(engine.layers) if layer.session_max_age), "")
    if max_age and engine.path_vars.project_root:
        cleanup_sessions(engine.path_vars.project_root, max_age)


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(int(ExitCode.ERROR))


@app.command()
def main(
    command: str | None = typer.Argument(None, help="Input to decide; read from stdin when omitted."),
    config: list[Path] | None = typer.Option(  # noqa: B008
        None, "--config", "-c", help="Additional configuration layer (repeatable, most specific last)."
    ),
    hook: bool = typer.Option(False, "--hook", help="Read a PreToolUse hook payload from stdin."),
    tool: str = typer.Option("Bash", "--tool", "-t", help="Tool name for plain mode (Bash, Read, WebFetch...)."),
    session: str = typer.Option("", "--session", help="Session id whose session layer applies."),
    debug: bool = typer.Option(False, "--debug", help="Log evaluation details to stderr and a log file."),
    fmt: bool = typer.Option(False, "--fmt", help="Validate the configuration and list rules by specificity."),
    version: bool = typer.Option(  # noqa: ARG001
        False, "--version", callback=_version_callback, is_eager=True, help="Print the version and exit."
    ),
) -> None:
    """Decide one tool call and report the verdict."""
    _configure_logging(debug)

    if fmt:
        try:
            engine = DecisionEngine.from_environment(session_id=session, explicit=config or ())
        except CCAllowError as exc:
            logger.debug("error details: %s", exc.to_dict())
            raise _fail(exc.message) from exc
        typer.echo(format_layers(engine.layers))
        raise typer.Exit(int(ExitCode.ALLOW))

    payload: HookInput | None = None
    if hook:
        try:
            payload = HookInput.model_validate_json(sys.stdin.read())
        except ValidationError as exc:
            raise _fail(f"invalid hook JSON: {exc}") from exc
        session = payload.session_id or session
    else:
        kind = ActionKind.from_tool_name(tool)
        if kind is None:
            raise _fail(f"unknown tool {tool!r}")
        raw = command if command is not None else sys.stdin.read()

    try:
        engine = DecisionEngine.from_environment(session_id=session, explicit=config or ())
        if debug:
            _attach_log_file(_debug_log_path(engine))
        _cleanup(engine)
        decision = engine.decide_hook(payload) if payload is not None else engine.decide(kind, raw)
    except CCAllowError as exc:
        logger.debug("error details: %s", exc.to_dict())
        raise _fail(exc.message) from exc

    if payload is not None:
        typer.echo(hook_output(decision).model_dump_json(by_alias=True))
        raise typer.Exit(int(ExitCode.ALLOW))

    _report_plain(decision)
    raise typer.Exit(int(decision.exit_code))


def run() -> None:
    """Console-script entry point."""
    app()
