"""Natural-language search over the ledger, ranked by the provider."""

from __future__ import annotations

import logging

from .models import SearchResponse

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


class SearchService:
    def __init__(self, ledger, gateway):
        self.ledger = ledger
        self.gateway = gateway

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> SearchResponse:
        """Hand the whole ledger to the provider and keep the top ``limit`` matches."""
        logger.info("Searching for %r (limit %d)", query, limit)
        corpus = self.ledger.read_all()
        results = self.gateway.rank(corpus, query)
        # The provider is not trusted to respect the limit.
        results = results[: max(limit, 0)]
        logger.info("Found %d results for %r", len(results), query)
        return SearchResponse(query=query, results=results, total=len(results))
