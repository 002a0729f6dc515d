"""Search stage: look up references for the reasoned keyphrases."""

import re
from typing import Any, Dict, Optional, Tuple

from gamal.pipeline.context import Context
from gamal.services.searxng import SearchClient


NAME = "Search"


def build_query(topic: Optional[str], keyphrases: Optional[str]) -> str:
    """
    Combine topic and keyphrases into one search query.

    Example:
        >>> build_query("astronomy", '"largest planet in the solar system".')
        'astronomy: largest planet in the solar system'
    """
    phrases = re.sub(r"\.$", "", (keyphrases or "").strip())
    phrases = re.sub(r'^"|"$', "", phrases)
    return f"{(topic or '').strip().rstrip('.')}: {phrases}"


async def search(context: Context, searcher: SearchClient) -> Tuple[Context, Dict[str, Any]]:
    """Run the search stage; failures propagate after the client's retries."""
    query = build_query(context.topic, context.keyphrases)
    outcome = await searcher.search(query, context.language)

    fields = {
        "engine": "SearXNG",
        "url": outcome.url,
        "references": list(outcome.references),
    }
    return context.model_copy(update={"references": list(outcome.references)}), fields
