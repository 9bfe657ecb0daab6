"""cc-allow error-code hierarchy.

Every failure that must be surfaced to the caller (rather than folded into
a verdict) is represented as a concrete exception class.  Malformed input
and malformed configuration are loud; policy gaps are not errors at all
and resolve to ``ask`` inside the engine.

Hierarchy
---------
::

    CCAllowError
    +-- ParseError            (CCA-E1xx)  shell input could not be parsed
    +-- ConfigError           (CCA-E2xx)  a configuration layer is unusable
    +-- ExternalCheckError    (CCA-E3xx)  URL reputation lookup failed

Usage
-----
Raise concrete subclasses directly::

    raise InvalidPattern("re:([", details={"location": "bash.deny.commands[0]"})

Catch by category::

    try:
        engine.decide(ActionKind.SHELL, raw)
    except (ParseError, ConfigError) as exc:
        sys.exit(exc.exit_code)
"""
from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class CCAllowError(Exception):
    """Base exception for all cc-allow errors.

    Attributes
    ----------
    code : str
        Error code, e.g. ``"CCA-E100"``.
    exit_code : int
        Process exit status used when the error reaches the CLI.
    message : str
        Human-readable description.
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the user.
    """

    code: str = "CCA-E000"
    exit_code: int = 3
    message: str = "Unknown cc-allow error"
    resolution: str = ""

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error for diagnostics output."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class ParseError(CCAllowError):
    """CCA-E1xx -- The shell input could not be turned into facts."""

    code = "CCA-E1XX"


class ConfigError(CCAllowError):
    """CCA-E2xx -- A configuration layer failed to load or validate."""

    code = "CCA-E2XX"


class ExternalCheckError(CCAllowError):
    """CCA-E3xx -- An optional external lookup failed.

    These never escape the engine; the fetch evaluator degrades to the
    configured default verdict instead.
    """

    code = "CCA-E3XX"


# ===================================================================
# CCA-E1xx -- Parse errors
# ===================================================================

class ShellSyntaxError(ParseError):
    """CCA-E100 -- The shell parser rejected the input."""

    code = "CCA-E100"
    message = "Shell syntax error"
    resolution = "Fix the command syntax and retry."


class UnsupportedSyntax(ParseError):
    """CCA-E101 -- The input uses a construct the parser cannot represent."""

    code = "CCA-E101"
    message = "Unsupported shell construct"
    resolution = "Rewrite the command without the unsupported construct."


# ===================================================================
# CCA-E2xx -- Configuration errors
# ===================================================================

class ConfigNotFound(ConfigError):
    """CCA-E200 -- An explicitly requested configuration file does not exist."""

    code = "CCA-E200"
    message = "Configuration file not found"


class ConfigSyntaxError(ConfigError):
    """CCA-E201 -- The configuration file is not valid TOML."""

    code = "CCA-E201"
    message = "Configuration file is not valid TOML"


class InvalidConfig(ConfigError):
    """CCA-E202 -- The configuration violates the schema."""

    code = "CCA-E202"
    message = "Invalid configuration"


class InvalidPattern(ConfigError):
    """CCA-E203 -- A pattern string could not be compiled."""

    code = "CCA-E203"
    message = "Invalid pattern"


class UnresolvedReference(ConfigError):
    """CCA-E204 -- A ``ref:`` or ``alias:`` points at nothing."""

    code = "CCA-E204"
    message = "Unresolved reference"


class CyclicReference(ConfigError):
    """CCA-E205 -- Cross-references or aliases form a cycle."""

    code = "CCA-E205"
    message = "Cyclic reference"


class UnsupportedVersion(ConfigError):
    """CCA-E206 -- The configuration declares a version newer than supported."""

    code = "CCA-E206"
    message = "Unsupported configuration version"


class HomeUnavailable(ConfigError):
    """CCA-E207 -- A pattern uses ``$HOME`` but no home directory is known."""

    code = "CCA-E207"
    message = "Configuration uses $HOME but HOME is not set"
    resolution = "Set the HOME environment variable or remove $HOME patterns."


# ===================================================================
# CCA-E3xx -- External check errors
# ===================================================================

class ReputationTimeout(ExternalCheckError):
    """CCA-E300 -- The URL reputation lookup timed out."""

    code = "CCA-E300"
    message = "URL reputation lookup timed out"


class ReputationUnavailable(ExternalCheckError):
    """CCA-E301 -- The URL reputation service returned an unusable response."""

    code = "CCA-E301"
    message = "URL reputation lookup failed"
