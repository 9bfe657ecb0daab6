"""Google Safe Browsing v4 reputation check for fetched URLs.

:class:`SafeBrowsingClient` implements the
:class:`~cc_allow.core.interfaces.URLChecker` protocol with a synchronous
``httpx`` client.  Every failure mode (timeout, transport error, non-200
status, undecodable body) is raised as an
:class:`~cc_allow.core.errors.ExternalCheckError` subclass; the fetch
evaluator catches those and falls back to the layer's default.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cc_allow import __version__
from cc_allow.core.errors import ReputationTimeout, ReputationUnavailable
from cc_allow.core.interfaces import URLCheckResult

logger = logging.getLogger(__name__)

SAFE_BROWSING_ENDPOINT = "https://safebrowsing.googleapis.com/v4/threatMatches:find"

THREAT_TYPES: tuple[str, ...] = (
    "MALWARE",
    "SOCIAL_ENGINEERING",
    "UNWANTED_SOFTWARE",
    "POTENTIALLY_HARMFUL_APPLICATION",
)

DEFAULT_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Response model
# ---------------------------------------------------------------------------

class ThreatMatch(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    threat_type: str = Field(default="", alias="threatType")


class ThreatMatchesResponse(BaseModel):
    """Body of ``threatMatches:find``; an empty object means no match."""

    model_config = ConfigDict(extra="ignore")

    matches: list[ThreatMatch] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SafeBrowsingClient:
    """Synchronous Safe Browsing lookup.

    Parameters
    ----------
    api_key:
        Google API key with the Safe Browsing API enabled.
    timeout:
        Request timeout in seconds (default: 5).
    client:
        Optional pre-built :class:`httpx.Client`, e.g. one with an
        ``httpx.MockTransport`` in tests.  When omitted, a client is
        created per lookup.
    endpoint:
        Override of the lookup endpoint.
    """

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
        endpoint: str = SAFE_BROWSING_ENDPOINT,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._endpoint = endpoint

    def build_request(self, url: str) -> dict[str, Any]:
        """Build the JSON request body for *url*."""
        return {
            "client": {"clientId": "cc-allow", "clientVersion": __version__},
            "threatInfo": {
                "threatTypes": list(THREAT_TYPES),
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }

    def check_url(self, url: str) -> URLCheckResult:
        """Look *url* up against the threat lists.

        Raises
        ------
        ReputationTimeout
            If the lookup did not complete within the timeout.
        ReputationUnavailable
            On transport errors, non-200 responses, or a malformed body.
        """
        body = self.build_request(url)
        try:
            if self._client is not None:
                response = self._post(self._client, body)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = self._post(client, body)
        except httpx.TimeoutException as exc:
            raise ReputationTimeout(
                f"Safe Browsing lookup timed out after {self._timeout}s",
                details={"url": url},
            ) from exc
        except httpx.HTTPError as exc:
            raise ReputationUnavailable(
                f"Safe Browsing request failed: {exc}",
                details={"url": url},
            ) from exc

        if response.status_code != 200:
            raise ReputationUnavailable(
                f"Safe Browsing API returned {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )
        try:
            parsed = ThreatMatchesResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ReputationUnavailable(
                f"Invalid Safe Browsing response: {exc}",
                details={"url": url},
            ) from exc

        if parsed.matches:
            threat = parsed.matches[0].threat_type
            logger.debug("Safe Browsing flagged %s as %s", url, threat)
            return URLCheckResult(safe=False, threat_type=threat)
        return URLCheckResult(safe=True)

    def _post(self, client: httpx.Client, body: dict[str, Any]) -> httpx.Response:
        return client.post(
            self._endpoint,
            params={"key": self._api_key},
            json=body,
            timeout=self._timeout,
        )
