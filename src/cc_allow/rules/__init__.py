"""Rule compilation and per-layer evaluation.

* **compile_layer** / **RuleSet** -- a validated layer turned into frozen rules.
* **LayerEvaluator** -- one layer's verdict for one unit, path or URL.
* **EvaluationContext** -- per-request resolver caches and URL checker.
* **shell_units** -- split shell facts into independently decided units.
"""
from __future__ import annotations

from cc_allow.rules.compiler import RuleSet, compile_layer, empty_ruleset
from cc_allow.rules.context import EvaluationContext
from cc_allow.rules.engine import WRITER_COMMANDS, LayerEvaluator
from cc_allow.rules.templates import TemplateContext, render, validate_template
from cc_allow.rules.units import Unit, UnitKind, shell_units

__all__ = [
    "WRITER_COMMANDS",
    "EvaluationContext",
    "LayerEvaluator",
    "RuleSet",
    "TemplateContext",
    "Unit",
    "UnitKind",
    "compile_layer",
    "empty_ruleset",
    "render",
    "shell_units",
    "validate_template",
]
