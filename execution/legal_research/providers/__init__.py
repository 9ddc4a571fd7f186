"""
Live legal research providers.

build_providers() returns providers in the configured enumeration order,
which is the order the aggregator merges their results in.
"""

from typing import Optional

import httpx

from ..settings import ResearchSettings
from .base import (
    ImportOutcome,
    ProviderConfig,
    ProviderHealth,
    ProviderSearchOptions,
    ProviderStatus,
    RetrievalProvider,
)
from .court_listener import CourtListenerProvider
from .google_scholar import GoogleScholarProvider
from .justia import JustiaProvider

PROVIDER_CLASSES = {
    "google_scholar": GoogleScholarProvider,
    "justia": JustiaProvider,
    "court_listener": CourtListenerProvider,
}


def build_providers(
    settings: ResearchSettings,
    client: Optional[httpx.AsyncClient] = None,
) -> list[RetrievalProvider]:
    """Instantiate the enabled providers, in settings order."""
    api_keys = {
        "google_scholar": settings.serp_api_key,
        "court_listener": settings.court_listener_api_key,
        "justia": None,
    }

    providers = []
    for name in settings.enabled_providers:
        provider_class = PROVIDER_CLASSES.get(name)
        if provider_class is None:
            raise ValueError(
                f"Unknown provider '{name}'. Expected one of: {', '.join(PROVIDER_CLASSES)}"
            )
        config = ProviderConfig(
            api_key=api_keys[name],
            timeout_seconds=settings.provider_timeout_seconds,
            live_search=settings.justia_live_search if name == "justia" else False,
        )
        providers.append(provider_class(config, client=client))
    return providers


__all__ = [
    "CourtListenerProvider",
    "GoogleScholarProvider",
    "ImportOutcome",
    "JustiaProvider",
    "PROVIDER_CLASSES",
    "ProviderConfig",
    "ProviderHealth",
    "ProviderSearchOptions",
    "ProviderStatus",
    "RetrievalProvider",
    "build_providers",
]
