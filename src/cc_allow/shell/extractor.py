"""Shell syntax tree to :class:`~cc_allow.core.types.ShellFacts`.

The parser (``bashlex``) is a black box producing a list of syntax trees.
:class:`ShellExtractor` walks those trees once and reduces every word to
a tagged :class:`~cc_allow.core.types.Word`, so downstream components work
with plain strings and patterns instead of shell semantics.

Reduction rules:

* A word is literal when all of its parts are literal text, single-quoted
  text, or double-quoted text without expansions.  Any parameter expansion
  or command/process substitution makes it dynamic.
* ``|`` / ``|&`` connected commands become one :class:`Pipeline`.
* ``&&`` / ``||`` / ``;`` separate independent units.
* Commands inside ``$(...)`` and ``<(...)`` are extracted as units too.
* Redirect descriptors default to 1 for output and 0 for input operators.

``bashlex`` does not cover all of bash.  Before parsing, quoted heredoc
delimiters (``<<'EOF'``, ``<<"EOF"``, ``<<\\EOF``) are unquoted and
remembered, and the ``time`` keyword is dropped.  Valid constructs the
parser still cannot represent (``[[ ]]``, ``case``, arithmetic, ``select``,
``coproc`` ...) are recorded in :attr:`ShellFacts.unsupported` instead of
failing; only malformed input raises :class:`ShellSyntaxError`.
"""
from __future__ import annotations

import logging
import re
from typing import Any

import bashlex
import bashlex.errors

from cc_allow.core.errors import ShellSyntaxError, UnsupportedSyntax
from cc_allow.core.types import (
    CommandFacts,
    Construct,
    Heredoc,
    Pipeline,
    Redirect,
    ShellFacts,
    Word,
)

logger = logging.getLogger(__name__)

_SUBSTITUTIONS = frozenset({"commandsubstitution", "processsubstitution"})
_HEREDOC_OPERATORS = frozenset({"<<", "<<-"})
_DUPLICATION_OPERATORS = frozenset({">&", "<&"})
_COMPOUND_KINDS = frozenset({"if", "for", "while", "until"})
_SKIPPED_KINDS = frozenset({"reservedword", "operator", "pipe", "tilde", "parameter", "heredoc"})

# <<'EOF', <<"EOF", <<\EOF and plain <<EOF; never the <<< here-string.
_HEREDOC_DELIMITER = re.compile(
    r"(?<!<)(<<-?)(?!<)([ \t]*)(?:'([^'\s]+)'|\"([^\"\s]+)\"|\\(\w+)|(\w+))"
)
# ``time`` / ``time -p`` in command position.
_TIME_KEYWORD = re.compile(
    r"(^|[;&|({]|\b(?:then|do|else)\b)([ \t]*)time(?:[ \t]+-p)?[ \t]+(?=\S)",
    re.MULTILINE,
)

# Valid bash that bashlex rejects with a parse error.
_PARSER_GAPS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\[\["), "[[ conditional"),
    (re.compile(r"\(\("), "arithmetic"),
    (re.compile(r"\$\([^)]*<<"), "heredoc in command substitution"),
    (re.compile(r"\b(?:case|select|coproc)\b"), "compound command"),
)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class BashlexParser:
    """Adapter exposing ``bashlex`` as a :class:`ShellParser`."""

    def parse(self, text: str) -> list[Any]:
        """Parse *text* into a list of syntax trees.

        Raises
        ------
        ShellSyntaxError
            If the input is not valid shell syntax.
        UnsupportedSyntax
            If the input uses a construct the parser does not implement.
        """
        try:
            return list(bashlex.parse(text))
        except bashlex.errors.ParsingError as exc:
            for pattern, construct in _PARSER_GAPS:
                if pattern.search(text):
                    raise UnsupportedSyntax(
                        f"unsupported shell construct: {construct}",
                        details={"construct": construct, "parser_error": str(exc)},
                    ) from exc
            raise ShellSyntaxError(
                f"shell syntax error: {exc}",
                details={"position": getattr(exc, "position", None)},
            ) from exc
        except NotImplementedError as exc:
            construct = str(exc) or "unknown"
            raise UnsupportedSyntax(
                f"unsupported shell construct: {construct}",
                details={"construct": construct},
            ) from exc


def normalize(text: str) -> tuple[str, frozenset[str]]:
    """Rewrite *text* into a form ``bashlex`` accepts.

    Returns the rewritten text and the heredoc delimiters that were
    quoted.  A delimiter used both quoted and unquoted is not reported.
    """
    quoted: set[str] = set()
    plain: set[str] = set()

    def _unquote(match: re.Match[str]) -> str:
        operator, space, single, double, escaped, bare = match.groups()
        if bare is not None:
            plain.add(bare)
            return match.group(0)
        name = single or double or escaped
        quoted.add(name)
        return f"{operator}{space}{name}"

    text = _HEREDOC_DELIMITER.sub(_unquote, text)
    text = _TIME_KEYWORD.sub(r"\1\2", text)
    return text, frozenset(quoted - plain)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class ShellExtractor:
    """Walks parsed trees and accumulates :class:`ShellFacts`.

    Parameters
    ----------
    parser:
        Any object with ``parse(text) -> list[node]``; defaults to
        :class:`BashlexParser`.
    """

    def __init__(self, parser: Any | None = None) -> None:
        self._parser = parser or BashlexParser()

    def extract(self, text: str) -> ShellFacts:
        """Parse *text* and extract its facts.

        Blank input yields empty facts (which the engine turns into ``ask``).
        Input the parser cannot represent yields facts whose only entry is
        :attr:`~cc_allow.core.types.ShellFacts.unsupported`.

        Raises
        ------
        ShellSyntaxError
            If the input is malformed.
        """
        if not text.strip():
            return ShellFacts()
        source, quoted = normalize(text)
        try:
            trees = self._parser.parse(source)
        except UnsupportedSyntax as exc:
            construct = exc.details.get("construct", "shell construct")
            logger.debug("parser cannot represent %s: %s", construct, exc.message)
            return ShellFacts(unsupported=(construct,))
        walk = _Walk(quoted)
        for tree in trees:
            walk.visit(tree)
        facts = walk.facts()
        logger.debug(
            "extracted %d pipeline(s), %d redirect(s), %d heredoc(s), constructs=%s, unsupported=%s",
            len(facts.pipelines),
            len(facts.redirects),
            len(facts.heredocs),
            sorted(facts.constructs),
            list(facts.unsupported),
        )
        return facts


def extract(text: str) -> ShellFacts:
    """Convenience wrapper: extract facts with the default parser."""
    return ShellExtractor().extract(text)


class _Walk:
    """Mutable accumulator for one extraction."""

    def __init__(self, quoted_delimiters: frozenset[str] = frozenset()) -> None:
        self._quoted = quoted_delimiters
        self._pipelines: list[Pipeline] = []
        self._redirects: list[Redirect] = []
        self._heredocs: list[Heredoc] = []
        self._constructs: set[Construct] = set()
        self._unsupported: list[str] = []
        self._nesting = 0

    def facts(self) -> ShellFacts:
        return ShellFacts(
            pipelines=tuple(self._pipelines),
            redirects=tuple(self._redirects),
            heredocs=tuple(self._heredocs),
            constructs=frozenset(self._constructs),
            unsupported=tuple(self._unsupported),
        )

    # -- tree walking -------------------------------------------------------

    def visit(
        self,
        node: Any,
        pipes_from: tuple[str, ...] = (),
        pipes_to: tuple[str, ...] = (),
    ) -> None:
        kind = node.kind
        if kind == "list":
            for part in node.parts:
                if part.kind == "operator":
                    if part.op == "&":
                        self._constructs.add(Construct.BACKGROUND)
                    continue
                self.visit(part, pipes_from, pipes_to)
        elif kind == "pipeline":
            self._pipeline([p for p in node.parts if p.kind != "pipe"], pipes_from, pipes_to)
        elif kind == "command":
            self._pipeline([node], pipes_from, pipes_to)
        elif kind == "compound":
            self._compound(node, pipes_from, pipes_to)
        elif kind in _COMPOUND_KINDS:
            for part in node.parts:
                if part.kind == "word":
                    self._word(part)
                elif part.kind not in _SKIPPED_KINDS:
                    self.visit(part, pipes_from, pipes_to)
        elif kind == "function":
            self._constructs.add(Construct.FUNCTION_DEFINITION)
            self.visit(node.body, pipes_from, pipes_to)
        elif kind == "word":
            self._word(node)
        elif kind in _SKIPPED_KINDS:
            return
        else:
            logger.debug("unsupported shell node %r", kind)
            self._unsupported.append(kind)

    def _compound(self, node: Any, pipes_from: tuple[str, ...], pipes_to: tuple[str, ...]) -> None:
        children = list(node.list)
        if children and children[0].kind == "reservedword" and children[0].word == "(":
            self._constructs.add(Construct.SUBSHELL)
        for child in children:
            if child.kind != "reservedword":
                self.visit(child, pipes_from, pipes_to)
        for redirect in getattr(node, "redirects", None) or ():
            self._redirect(redirect)

    def _pipeline(
        self,
        stages: list[Any],
        pipes_from: tuple[str, ...],
        pipes_to: tuple[str, ...],
    ) -> None:
        names = [tuple(_command_names(stage)) for stage in stages]
        facts: list[CommandFacts] = []
        for index, stage in enumerate(stages):
            upstream = pipes_from + tuple(n for group in names[:index] for n in group)
            downstream = tuple(n for group in names[index + 1:] for n in group) + pipes_to
            if stage.kind == "command":
                command = self._command(stage, upstream, downstream)
                if command is not None:
                    facts.append(command)
            else:
                self.visit(stage, upstream, downstream)
        if facts:
            self._pipelines.append(Pipeline(stages=tuple(facts)))

    def _command(
        self,
        node: Any,
        pipes_from: tuple[str, ...],
        pipes_to: tuple[str, ...],
    ) -> CommandFacts | None:
        assignments: list[str] = []
        words: list[Word] = []
        for part in node.parts:
            if part.kind == "assignment" and not words:
                self._word(part)
                assignments.append(part.word)
            elif part.kind in ("word", "assignment"):
                words.append(self._word(part))
            elif part.kind == "redirect":
                self._redirect(part)
        if not words:
            return None
        return CommandFacts(
            name=words[0],
            args=tuple(words[1:]),
            assignments=tuple(assignments),
            pipes_from=pipes_from,
            pipes_to=pipes_to,
            nested=self._nesting > 0,
        )

    # -- words and redirects ------------------------------------------------

    def _word(self, node: Any) -> Word:
        dynamic = False
        for part in getattr(node, "parts", None) or ():
            if part.kind in _SUBSTITUTIONS:
                dynamic = True
                self._nesting += 1
                try:
                    self.visit(part.command)
                finally:
                    self._nesting -= 1
            elif part.kind == "parameter":
                dynamic = True
        return Word(text=node.word, dynamic=dynamic)

    def _redirect(self, node: Any) -> None:
        operator = node.type
        if operator in _HEREDOC_OPERATORS:
            self._heredoc(node)
            return
        if operator == "<<<":
            self._constructs.add(Construct.HEREDOC)
            word = self._word(node.output)
            self._heredocs.append(Heredoc(body=word.text, here_string=True, dynamic=word.dynamic))
            return

        default_fd = 0 if operator.startswith("<") else 1
        fd = _as_fd(node.input, default_fd)
        output = node.output
        if not hasattr(output, "kind"):
            self._redirects.append(
                Redirect(operator=operator, target=Word.literal(str(output)), fd=fd, fd_duplicate=True)
            )
            return
        target = self._word(output)
        duplicate = operator in _DUPLICATION_OPERATORS and (target.text == "-" or target.text.isdigit())
        self._redirects.append(
            Redirect(
                operator=operator,
                target=target,
                fd=fd,
                append=operator == ">>",
                fd_duplicate=duplicate,
            )
        )

    def _heredoc(self, node: Any) -> None:
        self._constructs.add(Construct.HEREDOC)
        delimiter = node.output.word if hasattr(node.output, "word") else str(node.output)
        quoted = delimiter in self._quoted
        content = getattr(getattr(node, "heredoc", None), "value", "") or ""
        lines = content.rstrip("\n").split("\n") if content else []
        if lines and lines[-1].strip() == delimiter:
            lines.pop()
        body = "\n".join(lines)
        dynamic = not quoted and ("$" in body or "`" in body)
        self._heredocs.append(Heredoc(body=body, delimiter=delimiter, dynamic=dynamic))


def _as_fd(value: Any, default: int) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return default


def _command_names(node: Any) -> list[str]:
    """Collect command names in *node* for pipe-source context."""
    kind = node.kind
    if kind == "command":
        for part in node.parts:
            if part.kind == "word":
                return [part.word]
        return []
    names: list[str] = []
    for child in getattr(node, "parts", None) or getattr(node, "list", None) or ():
        if hasattr(child, "kind") and child.kind not in _SKIPPED_KINDS and child.kind != "word":
            names.extend(_command_names(child))
    return names
