"""
Google Scholar case law via SerpAPI (SERP_API_KEY).
"""

import re
import logging

from ..chunker import extract_citations
from ..vector_store import SearchResult
from .base import ProviderSearchOptions, RetrievalProvider

logger = logging.getLogger(__name__)

BASE_URL = "https://serpapi.com/search"
YEAR_IN_SUMMARY = re.compile(r"\b(1[6-9]\d{2}|20\d{2})\b")


class GoogleScholarProvider(RetrievalProvider):
    """Case law and articles from Google Scholar."""

    name = "google_scholar"
    display_name = "Google Scholar"
    health_check_query = "custodial interrogation"
    sends_date_bound = True

    curated_results = [
        {
            "id": "miranda-v-arizona-1966",
            "title": "Miranda v. Arizona",
            "citation": "384 U.S. 436 (1966)",
            "court": "Supreme Court of the United States",
            "date": "1966-06-13",
            "url": "https://scholar.google.com/scholar_case?case=5680297586207321984",
            "content": (
                "The prosecution may not use statements, whether exculpatory or "
                "inculpatory, stemming from custodial interrogation of the defendant "
                "unless it demonstrates the use of procedural safeguards effective to "
                "secure the privilege against self-incrimination."
            ),
            "jurisdiction": "US",
            "practice_area": "CRIM",
            "document_type": "SCOTUS",
        },
        {
            "id": "brown-v-board-1954",
            "title": "Brown v. Board of Education",
            "citation": "347 U.S. 483 (1954)",
            "court": "Supreme Court of the United States",
            "date": "1954-05-17",
            "url": "https://scholar.google.com/scholar_case?case=12120372216939101759",
            "content": (
                "Separate educational facilities are inherently unequal, depriving "
                "plaintiffs of the equal protection of the laws."
            ),
            "jurisdiction": "US",
            "practice_area": "CIVIL",
            "document_type": "SCOTUS",
        },
    ]

    async def _search_live(
        self, query: str, options: ProviderSearchOptions
    ) -> list[SearchResult]:
        params = {
            "engine": "google_scholar",
            "q": query,
            "api_key": self.config.api_key,
            "num": options.limit,
        }
        if options.filters.date_from:
            params["as_ylo"] = options.filters.date_from[:4]

        async with self._http() as client:
            response = await client.get(self.config.base_url or BASE_URL, params=params)
            response.raise_for_status()
            payload = response.json()

        if payload.get("error"):
            raise RuntimeError(f"SerpAPI error: {payload['error']}")

        results = []
        for position, item in enumerate(payload.get("organic_results") or []):
            title = (item.get("title") or "").strip()
            if not title:
                continue
            snippet = (item.get("snippet") or "").strip()
            summary = (item.get("publication_info") or {}).get("summary", "")
            year = YEAR_IN_SUMMARY.search(summary)
            citations = extract_citations(f"{title} {snippet}")
            results.append(SearchResult(
                id=f"{self.name}-{item.get('result_id') or position}",
                title=title,
                content=snippet,
                source=self.display_name,
                source_type="live",
                citation=citations[0] if citations else None,
                date=f"{year.group(1)}-01-01" if year else None,
                url=item.get("link"),
                jurisdiction="US",
                metadata={"publication_info": summary},
            ))
        logger.info(f"Google Scholar returned {len(results)} results for '{query[:50]}'")
        return results
