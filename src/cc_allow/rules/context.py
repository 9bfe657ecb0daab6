"""Per-evaluation state.

An :class:`EvaluationContext` is created for one ``decide`` call and
thrown away afterwards.  It owns the only mutable state of an evaluation,
the command-resolution caches, so concurrent evaluations never share a
cache and the compiled rule sets stay read-only.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from cc_allow.fetch import SafeBrowsingClient
from cc_allow.pathutil import CommandResolver, PathVars, Resolution

if TYPE_CHECKING:
    from cc_allow.core.interfaces import URLChecker
    from cc_allow.rules.compiler import SafeBrowsingSettings

logger = logging.getLogger(__name__)


class EvaluationContext:
    """Working directory, path variables and resolver caches for one request.

    Parameters
    ----------
    path_vars:
        ``cwd`` / ``$HOME`` / ``$PROJECT_ROOT`` of the request.
    url_checker:
        Reputation checker used instead of building a
        :class:`~cc_allow.fetch.SafeBrowsingClient` from layer settings.
    """

    def __init__(self, path_vars: PathVars, *, url_checker: URLChecker | None = None) -> None:
        self.path_vars = path_vars
        self._url_checker = url_checker
        self._resolvers: dict[tuple[str, ...], CommandResolver] = {}

    def resolve(self, name: str, allowed_paths: Sequence[str] = ()) -> Resolution:
        """Resolve *name* against *allowed_paths* (``$PATH`` when empty)."""
        search = tuple(self.path_vars.expand(p) for p in allowed_paths)
        resolver = self._resolvers.get(search)
        if resolver is None:
            resolver = CommandResolver(search, cwd=self.path_vars.cwd)
            self._resolvers[search] = resolver
        return resolver.resolve(name)

    def url_checker(self, settings: SafeBrowsingSettings) -> URLChecker | None:
        """Return the checker for a layer's settings, or ``None`` if unusable."""
        if not settings.enabled:
            return None
        if self._url_checker is not None:
            return self._url_checker
        if not settings.api_key:
            logger.warning("webfetch.safe_browsing is enabled but no api_key is configured")
            return None
        return SafeBrowsingClient(settings.api_key, timeout=settings.timeout)
