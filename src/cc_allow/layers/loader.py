"""Load one configuration layer from TOML.

Loading is a three-step pipeline, and every step fails loudly:

1. **Decode** -- ``tomllib``; a decode failure is :class:`ConfigSyntaxError`.
2. **Validate** -- :class:`~cc_allow.core.config.LayerConfig`; a pydantic
   ``ValidationError`` becomes :class:`InvalidConfig`, and a newer
   ``version`` than supported is :class:`UnsupportedVersion`.
3. **Compile** -- :func:`~cc_allow.rules.compiler.compile_layer`; bad
   patterns, references and templates abort the load.

A bad rule never gets silently skipped.
"""
from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from cc_allow.core.config import SUPPORTED_VERSION, LayerConfig
from cc_allow.core.errors import (
    ConfigNotFound,
    ConfigSyntaxError,
    InvalidConfig,
    UnsupportedVersion,
)
from cc_allow.core.types import LayerScope
from cc_allow.rules.compiler import RuleSet, compile_layer

logger = logging.getLogger(__name__)


def parse_layer(data: dict[str, Any], *, source: str = "") -> LayerConfig:
    """Validate decoded TOML *data* into a :class:`LayerConfig`.

    Raises
    ------
    InvalidConfig
        If the data violates the schema.
    UnsupportedVersion
        If ``version`` is newer than this release understands.
    """
    try:
        config = LayerConfig.model_validate(data)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise InvalidConfig(
            f"invalid configuration {source or '(inline)'}: {'; '.join(problems)}",
            details={"source": source, "errors": problems},
        ) from exc

    version = config.version_tuple
    if version is not None and version > SUPPORTED_VERSION:
        supported = ".".join(str(n) for n in SUPPORTED_VERSION)
        raise UnsupportedVersion(
            f"{source or '(inline)'} declares version {config.version}; this release supports up to {supported}",
            details={"source": source, "version": config.version, "supported": supported},
            resolution="Upgrade cc-allow or lower the configuration version.",
        )
    return config


def load_layer_text(text: str, *, scope: LayerScope, source: str = "") -> RuleSet:
    """Decode, validate and compile TOML *text*.

    Raises
    ------
    ConfigSyntaxError
        If *text* is not valid TOML.
    ConfigError
        Any other configuration problem (see :func:`parse_layer` and
        :func:`~cc_allow.rules.compiler.compile_layer`).
    """
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigSyntaxError(
            f"{source or '(inline)'}: {exc}",
            details={"source": source},
        ) from exc
    config = parse_layer(data, source=source)
    return compile_layer(config, scope=scope, source=source)


def load_layer_file(path: str | Path, scope: LayerScope) -> RuleSet:
    """Load the layer stored at *path*.

    Raises
    ------
    ConfigNotFound
        If *path* does not exist or is not a regular file.
    """
    file = Path(path)
    if not file.is_file():
        raise ConfigNotFound(
            f"configuration file not found: {file}",
            details={"path": str(file)},
        )
    ruleset = load_layer_text(file.read_text(encoding="utf-8"), scope=scope, source=str(file))
    logger.info("loaded %s layer from %s", scope.label, file)
    return ruleset


class TomlLayerLoader:
    """:class:`~cc_allow.core.interfaces.LayerLoader` backed by TOML files."""

    def load(self, source: str, scope: LayerScope) -> RuleSet:
        return load_layer_file(source, scope)
