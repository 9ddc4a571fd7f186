"""
CourtListener opinion search.

Live mode uses the REST search API with token auth
(COURT_LISTENER_API_KEY); without a token the curated opinions are served.
"""

import logging
from typing import Optional
from urllib.parse import urljoin

from ..vector_store import SearchResult
from .base import ProviderSearchOptions, RetrievalProvider

logger = logging.getLogger(__name__)

BASE_URL = "https://www.courtlistener.com/api/rest/v3"
SITE_URL = "https://www.courtlistener.com"
MAX_PAGE_SIZE = 100


class CourtListenerProvider(RetrievalProvider):
    """Federal and state opinions from CourtListener."""

    name = "court_listener"
    display_name = "CourtListener"
    health_check_query = "executive privilege"
    sends_date_bound = True

    curated_results = [
        {
            "id": "united-states-v-nixon-1974",
            "title": "United States v. Nixon",
            "citation": "418 U.S. 683 (1974)",
            "court": "Supreme Court of the United States",
            "date": "1974-07-24",
            "url": "https://www.courtlistener.com/opinion/108713/united-states-v-nixon/",
            "content": (
                "The President's claim of executive privilege must yield to the "
                "demonstrated, specific need for evidence in a pending criminal trial."
            ),
            "jurisdiction": "US",
            "practice_area": "CONST",
            "document_type": "SCOTUS",
        },
        {
            "id": "gideon-v-wainwright-1963",
            "title": "Gideon v. Wainwright",
            "citation": "372 U.S. 335 (1963)",
            "court": "Supreme Court of the United States",
            "date": "1963-03-18",
            "url": "https://www.courtlistener.com/opinion/106288/gideon-v-wainwright/",
            "content": (
                "The right of an indigent defendant in a criminal trial to have the "
                "assistance of counsel is a fundamental right essential to a fair trial."
            ),
            "jurisdiction": "US",
            "practice_area": "CRIM",
            "document_type": "SCOTUS",
        },
    ]

    async def _search_live(
        self, query: str, options: ProviderSearchOptions
    ) -> list[SearchResult]:
        params = {
            "q": query,
            "type": "o",  # opinions
            "order_by": "score desc",
            "format": "json",
            "page_size": min(max(options.limit, 1), MAX_PAGE_SIZE),
        }
        if options.filters.date_from:
            params["filed_after"] = options.filters.date_from
        headers = {
            "Authorization": f"Token {self.config.api_key}",
            "Accept": "application/json",
        }

        base_url = (self.config.base_url or BASE_URL).rstrip("/")
        async with self._http() as client:
            response = await client.get(f"{base_url}/search/", params=params, headers=headers)
            response.raise_for_status()
            payload = response.json()

        results = []
        for item in payload.get("results") or []:
            result = self._from_api(item)
            if result is not None:
                results.append(result)
        logger.info(f"CourtListener returned {len(results)} opinions for '{query[:50]}'")
        return results

    def _from_api(self, item: dict) -> Optional[SearchResult]:
        identifier = item.get("id") or item.get("cluster_id") or item.get("absolute_url")
        title = (item.get("caseName") or item.get("case_name") or "").strip()
        if identifier is None or not title:
            return None

        citation = item.get("citation")
        if isinstance(citation, list):
            citation = citation[0] if citation else None

        filed = item.get("dateFiled") or item.get("date_filed")
        url = item.get("absolute_url")
        return SearchResult(
            id=f"{self.name}-{identifier}",
            title=title,
            content=(item.get("snippet") or item.get("text") or "").strip(),
            source=self.display_name,
            source_type="live",
            citation=citation or None,
            court=item.get("court"),
            date=filed[:10] if filed else None,
            url=urljoin(SITE_URL, url) if url else None,
            jurisdiction="US",
            metadata={"docket_number": item.get("docketNumber")},
        )
