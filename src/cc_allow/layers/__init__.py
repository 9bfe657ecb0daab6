"""Configuration layers: discovery, loading and merge.

* **discover_layers** / **load_layers** -- find and load the layer chain.
* **load_layer_file** / **load_layer_text** -- one TOML layer to a RuleSet.
* **merge_layers** / **combine_units** -- per-unit merge, strict combination.
* **cleanup_sessions** -- delete stale session layers.
"""
from __future__ import annotations

from cc_allow.layers.discovery import (
    LayerPaths,
    cleanup_sessions,
    discover_layers,
    find_project_root,
    load_layers,
    parse_max_age,
    session_config_path,
)
from cc_allow.layers.loader import TomlLayerLoader, load_layer_file, load_layer_text, parse_layer
from cc_allow.layers.merge import DEFAULT_VERDICT, combine_units, has_opinion, merge_layers

__all__ = [
    "DEFAULT_VERDICT",
    "LayerPaths",
    "TomlLayerLoader",
    "cleanup_sessions",
    "combine_units",
    "discover_layers",
    "find_project_root",
    "has_opinion",
    "load_layer_file",
    "load_layer_text",
    "load_layers",
    "merge_layers",
    "parse_layer",
    "parse_max_age",
    "session_config_path",
]
