"""Layer merge and unit combination.

Two different orders are used, and they must not be confused:

* **Across layers** (one unit, many layers): any deny wins, otherwise any
  allow, otherwise any explicit ask, otherwise the system default
  (:data:`DEFAULT_VERDICT`, always ask).  The attributed message comes
  from the *most specific* layer that produced the winning verdict.
* **Across units** (one input, many units): the strictest unit decides,
  deny > ask > allow.  One unit needing approval makes the whole input
  need approval.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

from cc_allow.core.types import Decision, LayerVerdict, Verdict

logger = logging.getLogger(__name__)

DEFAULT_VERDICT = Verdict.ASK

NO_COMMANDS_MESSAGE = "no executable commands"

# Across layers, allow outranks an explicit ask.
_MERGE_ORDER = (Verdict.DENY, Verdict.ALLOW, Verdict.ASK)


def merge_layers(verdicts: Sequence[LayerVerdict], *, unit: str = "") -> Decision:
    """Merge the per-layer verdicts for one unit into a :class:`Decision`.

    Parameters
    ----------
    verdicts:
        One verdict per layer, loosest to most specific.  Each was
        produced without knowledge of the others.
    unit:
        Description of the unit, carried into the decision.

    Returns
    -------
    Decision
        Never ``NO_OPINION``: a unit no layer had an opinion on gets
        :data:`DEFAULT_VERDICT` with no matched rule.
    """
    for wanted in _MERGE_ORDER:
        producers = [v for v in verdicts if v.verdict is wanted]
        if not producers:
            continue
        # max() keeps the first of equal scopes; the later layer is more specific.
        winner = max(reversed(producers), key=lambda v: v.scope)
        return Decision(
            verdict=wanted,
            message=winner.message,
            matched_rule=winner.matched_rule,
            scope=winner.scope,
            unit=unit,
            layers=tuple(verdicts),
        )
    return Decision(verdict=DEFAULT_VERDICT, unit=unit, layers=tuple(verdicts))


def combine_units(decisions: Sequence[Decision]) -> Decision:
    """Combine unit decisions strictly; the first of equally strict units wins.

    An empty sequence (input without executable commands) gives ask.
    """
    if not decisions:
        return Decision(verdict=DEFAULT_VERDICT, message=NO_COMMANDS_MESSAGE)
    strictest = decisions[0]
    for decision in decisions[1:]:
        if decision.verdict.strictness > strictest.verdict.strictness:
            strictest = decision
    logger.debug("combined %d unit decision(s) -> %s (%s)", len(decisions), strictest.verdict, strictest.unit)
    return strictest


def has_opinion(verdicts: Sequence[LayerVerdict]) -> bool:
    """Return ``True`` if any layer produced something other than no opinion."""
    return any(v.verdict is not Verdict.NO_OPINION for v in verdicts)
