"""cc-allow -- layered allow / deny / ask policy for agent tool calls.

Turns a requested action (a shell command line, a file path, a search
path or a URL) into a verdict by evaluating it against layered,
specificity-ranked rule sets.

Components
----------
1. Path canonicalization and command resolution (:mod:`cc_allow.pathutil`)
2. Typed pattern matching and references (:mod:`cc_allow.matching`)
3. Shell fact extraction (:mod:`cc_allow.shell`)
4. Rule compilation and per-layer evaluation (:mod:`cc_allow.rules`)
5. Layer discovery, loading and merge (:mod:`cc_allow.layers`)
6. URL reputation checks (:mod:`cc_allow.fetch`)
7. Decision facade (:mod:`cc_allow.engine`) and CLI (:mod:`cc_allow.cli`)
"""
from __future__ import annotations

__version__ = "0.9.0"

# ---------------------------------------------------------------------------
# Core types, errors, config, interfaces
# ---------------------------------------------------------------------------
from cc_allow.core.config import LayerConfig
from cc_allow.core.errors import (
    CCAllowError,
    ConfigError,
    ConfigNotFound,
    ConfigSyntaxError,
    CyclicReference,
    ExternalCheckError,
    HomeUnavailable,
    InvalidConfig,
    InvalidPattern,
    ParseError,
    ReputationTimeout,
    ReputationUnavailable,
    ShellSyntaxError,
    UnresolvedReference,
    UnsupportedSyntax,
    UnsupportedVersion,
)
from cc_allow.core.interfaces import LayerLoader, ShellParser, URLChecker, URLCheckResult
from cc_allow.core.types import (
    ActionFacts,
    ActionKind,
    CommandFacts,
    Construct,
    Decision,
    ExitCode,
    HookInput,
    LayerScope,
    LayerVerdict,
    MatchedRule,
    ShellFacts,
    Verdict,
    Word,
)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
from cc_allow.engine import DecisionEngine
from cc_allow.fetch import SafeBrowsingClient
from cc_allow.layers import (
    cleanup_sessions,
    combine_units,
    discover_layers,
    load_layer_file,
    load_layer_text,
    merge_layers,
)
from cc_allow.matching import Pattern, PatternMatcher, ReferenceTable, parse_pattern
from cc_allow.pathutil import CommandResolver, PathVars, is_path_like, resolve_path
from cc_allow.rules import LayerEvaluator, RuleSet, compile_layer
from cc_allow.shell import ShellExtractor, extract

__all__ = [
    "__version__",
    # Core
    "ActionFacts",
    "ActionKind",
    "CommandFacts",
    "Construct",
    "Decision",
    "ExitCode",
    "HookInput",
    "LayerConfig",
    "LayerScope",
    "LayerVerdict",
    "MatchedRule",
    "ShellFacts",
    "Verdict",
    "Word",
    # Errors
    "CCAllowError",
    "ConfigError",
    "ConfigNotFound",
    "ConfigSyntaxError",
    "CyclicReference",
    "ExternalCheckError",
    "HomeUnavailable",
    "InvalidConfig",
    "InvalidPattern",
    "ParseError",
    "ReputationTimeout",
    "ReputationUnavailable",
    "ShellSyntaxError",
    "UnresolvedReference",
    "UnsupportedSyntax",
    "UnsupportedVersion",
    # Interfaces
    "LayerLoader",
    "ShellParser",
    "URLCheckResult",
    "URLChecker",
    # Components
    "CommandResolver",
    "DecisionEngine",
    "LayerEvaluator",
    "PathVars",
    "Pattern",
    "PatternMatcher",
    "ReferenceTable",
    "RuleSet",
    "SafeBrowsingClient",
    "ShellExtractor",
    "cleanup_sessions",
    "combine_units",
    "compile_layer",
    "discover_layers",
    "extract",
    "is_path_like",
    "load_layer_file",
    "load_layer_text",
    "merge_layers",
    "parse_pattern",
    "resolve_path",
]
