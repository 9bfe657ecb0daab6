"""cc-allow collaborator interfaces.

The decision engine consumes three collaborators it does not implement
itself: a shell parser, a layer loader, and an optional URL reputation
check.  Each is a structural ``typing.Protocol`` decorated with
``@runtime_checkable`` so tests can substitute plain objects.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cc_allow.core.types import LayerScope
    from cc_allow.rules.compiler import RuleSet


@runtime_checkable
class ShellParser(Protocol):
    """Turns shell text into a list of syntax trees.

    Raises :class:`~cc_allow.core.errors.ShellSyntaxError` on malformed input
    and :class:`~cc_allow.core.errors.UnsupportedSyntax` for valid input it
    cannot represent.
    """

    def parse(self, text: str) -> list[Any]:
        ...


@runtime_checkable
class LayerLoader(Protocol):
    """Loads and compiles one configuration source.

    Raises :class:`~cc_allow.core.errors.ConfigError` when the source is
    unusable; a bad rule aborts the whole layer.
    """

    def load(self, source: str, scope: LayerScope) -> RuleSet:
        ...


@dataclass(frozen=True, slots=True)
class URLCheckResult:
    """Outcome of a reputation lookup.

    Attributes
    ----------
    safe:
        ``False`` when the URL matched a threat list.
    threat_type:
        The first matched threat type (``"MALWARE"`` ...), if any.
    """

    safe: bool
    threat_type: str = ""


@runtime_checkable
class URLChecker(Protocol):
    """Optional URL reputation collaborator.

    Implementations bound their own latency and raise
    :class:`~cc_allow.core.errors.ReputationTimeout` or
    :class:`~cc_allow.core.errors.ReputationUnavailable` on failure.
    """

    def check_url(self, url: str) -> URLCheckResult:
        ...
