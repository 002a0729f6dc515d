"""SearXNG search client."""

from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field

from gamal.models.chat import Reference
from gamal.models.config import SearchConfig
from gamal.services.exceptions import RemoteError, RequestTimeoutError
from gamal.utils.logging import get_logger
from gamal.utils.retry import retry_async


logger = get_logger(__name__)

# Matched by prefix, case-insensitively, against the language the model reports
LANGUAGE_CODES = {
    "German": "de",
    "Deutsch": "de",
    "French": "fr",
    "Français": "fr",
    "Spanish": "es",
    "Español": "es",
    "Indonesia": "id",
    "Bahasa": "id",
    "Italian": "it",
    "Italiano": "it",
}


def iso639_1(language: Optional[str]) -> Optional[str]:
    """
    Map a language name to its ISO 639-1 code.

    Returns None for languages outside the table.

    Example:
        >>> iso639_1("Français (France)")
        'fr'
        >>> iso639_1("Mandarin") is None
        True
    """
    lang = (language or "Unknown").lower()
    for name, code in LANGUAGE_CODES.items():
        if lang.startswith(name.lower()):
            return code
    return None


class SearchOutcome(BaseModel):
    """Result of one search: the request URL and the kept references."""

    url: str
    references: List[Reference] = Field(default_factory=list)

    model_config = {"frozen": True}


class SearchClient:
    """
    HTTP client for a SearXNG instance with JSON output enabled.

    Results without a URL or without content are dropped, the first top_k
    remaining become references. An empty result set counts as a remote
    failure and is retried like a timeout.
    """

    def __init__(self, config: SearchConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport
        self.timeout = httpx.Timeout(config.timeout)

    def _params(self, query: str, language: Optional[str]) -> Dict[str, str]:
        return {
            "q": query,
            "language": iso639_1(language) or "auto",
            "categories": self.config.categories,
            "engines": self.config.engines,
            "safesearch": "0",
            "format": "json",
        }

    def _normalize(self, results: List[Dict[str, Any]]) -> List[Reference]:
        usable = [
            entry for entry in results
            if isinstance(entry, dict) and entry.get("url") and entry.get("content")
        ]
        return [
            Reference(
                position=index,
                url=str(entry["url"]),
                title=str(entry.get("title") or ""),
                snippet=str(entry["content"])[:self.config.snippet_max_chars],
            )
            for index, entry in enumerate(usable[:self.config.top_k], start=1)
        ]

    async def _search_once(self, url: str, params: Dict[str, str]) -> SearchOutcome:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.warning("searxng_timeout", timeout=self.config.timeout, error=str(e))
            raise RequestTimeoutError(
                f"No response from SearXNG within {self.config.timeout:g} seconds"
            ) from e

        if not response.is_success:
            logger.warning("searxng_http_error", status_code=response.status_code)
            raise RemoteError(
                f"SearXNG failed with status: {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        results = (data.get("results") if isinstance(data, dict) else None) or []
        references = self._normalize(results)
        if not references:
            logger.warning("searxng_no_results", result_count=len(results))
            raise RemoteError("SearXNG failed, giving no result")

        return SearchOutcome(url=f"{url}?{urlencode(params)}", references=references)

    async def search(self, query: str, language: Optional[str] = None) -> SearchOutcome:
        """
        Search the web and return the top references.

        Args:
            query: Search query
            language: Language name as reported by the reasoning stage

        Returns:
            SearchOutcome with 1 to top_k references

        Raises:
            RequestTimeoutError: No response within the deadline, after retries
            RemoteError: Non-success status or no usable result, after retries
        """
        url = f"{self.config.url}/search"
        params = self._params(query, language)

        logger.info(
            "searxng_search_started",
            query=query,
            language=params["language"],
            url=url,
        )
        logger.debug("searxng_search_params", params=params)

        outcome = await retry_async(
            lambda: self._search_once(url, params),
            max_attempts=self.config.max_attempts,
            backoff=self.config.retry_backoff,
            label="searxng",
        )

        logger.info(
            "searxng_search_completed",
            query=query,
            reference_count=len(outcome.references),
        )
        return outcome
