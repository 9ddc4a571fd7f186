"""
FastAPI Backend for Legal Research

Provides REST endpoints for grounded retrieval, streaming chat with numbered
citations, document ingestion and provider imports.

Run with: uvicorn execution.legal_research.api:app --host 0.0.0.0 --port 8000
"""

import time
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    RetrieveRequest, RetrieveResponse, SearchResultModel, CitationModel,
    ProviderFailureModel, ChatRequest,
    IngestRequest, IngestResponse,
    ImportRequest, ImportResponse, ImportOutcomeModel,
    HealthResponse,
)
from .citation import GroundingContextBuilder, citations_header, system_prompt
from .document_parser import LegalDocumentParser
from .errors import InvalidRetrievalRequest
from .ingestion import IngestionPipeline
from .language_patterns import LLM_FALLBACK_MESSAGE
from .metrics import MetricsCollector
from .providers import ProviderSearchOptions
from .retriever import RetrievalAggregator, RetrievalReport, build_aggregator
from .settings import ResearchSettings
from .vector_store import SearchFilters

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Builds and caches the services behind the API. Nothing connects until first use."""

    def __init__(
        self,
        settings: Optional[ResearchSettings] = None,
        aggregator: Optional[RetrievalAggregator] = None,
        pipeline: Optional[IngestionPipeline] = None,
        llm_client=None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.settings = settings or ResearchSettings.from_env()
        self.metrics = metrics or MetricsCollector()
        self.builder = GroundingContextBuilder()
        self._aggregator = aggregator
        self._pipeline = pipeline
        self._llm_client = llm_client

    @property
    def aggregator(self) -> RetrievalAggregator:
        if self._aggregator is None:
            self._aggregator = build_aggregator(self.settings, metrics=self.metrics)
        return self._aggregator

    @property
    def pipeline(self) -> IngestionPipeline:
        if self._pipeline is None:
            aggregator = self.aggregator
            self._pipeline = IngestionPipeline(
                aggregator.store,
                aggregator.embedding_service,
                max_chunk_bytes=self.settings.max_chunk_bytes,
                metrics=self.metrics,
            )
        return self._pipeline

    def get_llm_client(self):
        """Get or create the cached OpenAI-compatible client. None without an API key."""
        if self._llm_client is None and self.settings.llm_api_key:
            from openai import AsyncOpenAI
            self._llm_client = AsyncOpenAI(
                base_url=self.settings.llm_base_url,
                api_key=self.settings.llm_api_key,
                timeout=120.0,
            )
        return self._llm_client

    def invalidate_cache(self) -> None:
        """Drop cached result lists after the store changes."""
        cache = self.aggregator.cache
        if cache is not None:
            cache.clear()


def _get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _to_response(report: RetrievalReport, container: ServiceContainer, elapsed_ms: float) -> RetrieveResponse:
    context = container.builder.build_context(report.results)
    return RetrieveResponse(
        results=[SearchResultModel.model_validate(r.to_dict()) for r in report.results],
        citations=[CitationModel.model_validate(c.to_dict()) for c in context.citations],
        prompt_blocks=context.prompt_blocks,
        embedding_degraded=report.embedding_degraded,
        provider_failures=[ProviderFailureModel(**f.to_dict()) for f in report.failures],
        cache_hit=report.cache_hit,
        latency_ms=round(elapsed_ms, 2),
    )


# =============================================================================
# App factory
# =============================================================================

def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create the API. Tests pass a container with mocked services."""
    container = container or ServiceContainer()

    app = FastAPI(
        title="Legal Research API",
        description="Grounded legal research: retrieval, citations and cited answers",
        version=__version__,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=container.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Citations", "X-Source-Count"],
    )

    @app.exception_handler(InvalidRetrievalRequest)
    async def invalid_request_handler(request: Request, exc: InvalidRetrievalRequest):
        return JSONResponse(status_code=400, content={"detail": str(exc), "field": exc.field})

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    @app.post("/api/v1/retrieve", response_model=RetrieveResponse)
    async def retrieve(body: RetrieveRequest, request: Request):
        """Ranked results, numbered citations and prompt blocks for a query."""
        container = _get_container(request)
        start_time = time.time()

        report = await container.aggregator.retrieve_detailed(
            body.query,
            limit=body.limit,
            filters=body.filters.to_filters() if body.filters else None,
            sources=body.sources,
            date_from=body.date_from,
        )
        return _to_response(report, container, (time.time() - start_time) * 1000)

    @app.post("/api/v1/chat")
    async def chat(body: ChatRequest, request: Request):
        """
        Stream a cited answer as plain text.

        Citations are sent up front in the X-Citations header so the UI can
        render them before the answer finishes.
        """
        container = _get_container(request)

        user_messages = [m for m in body.messages if m.role == "user"]
        if not user_messages:
            raise HTTPException(status_code=400, detail="No user message to answer")
        query = user_messages[-1].content

        report = await container.aggregator.retrieve_detailed(
            query,
            limit=body.limit,
            filters=body.filters.to_filters() if body.filters else None,
            sources=body.sources,
        )
        context = container.builder.build_context(report.results)
        messages = [{"role": "system", "content": system_prompt(context)}]
        messages += [m.model_dump() for m in body.messages if m.role != "system"]

        async def generate():
            llm_client = container.get_llm_client()
            if llm_client is None:
                logger.warning("Chat: no LLM API key configured, returning fallback")
                yield LLM_FALLBACK_MESSAGE
                return

            emitted = False
            try:
                stream = await llm_client.chat.completions.create(
                    model=container.settings.llm_model,
                    messages=messages,
                    temperature=0.1,
                    max_tokens=2000,
                    stream=True,
                )
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        emitted = True
                        yield chunk.choices[0].delta.content
            except Exception as e:
                logger.error(f"Chat: LLM failed: {type(e).__name__}: {e}")
                yield ("\n\n" if emitted else "") + LLM_FALLBACK_MESSAGE

        return StreamingResponse(
            generate(),
            media_type="text/plain; charset=utf-8",
            headers={
                "X-Citations": citations_header(context.citations),
                "X-Source-Count": str(len(context.citations)),
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",  # Disable nginx buffering
            },
        )

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    @app.post("/api/v1/documents/ingest", response_model=IngestResponse)
    async def ingest_document(body: IngestRequest, request: Request):
        """Chunk, embed and store a document body. Re-ingesting an id replaces it."""
        container = _get_container(request)
        document = LegalDocumentParser().parse_text(
            body.content,
            document_id=body.document_id,
            title=body.title,
            source=body.source,
            source_url=body.source_url,
            citation=body.citation,
            court=body.court,
            jurisdiction=body.jurisdiction,
            practice_area=body.practice_area,
            document_type=body.document_type,
            publication_date=body.publication_date,
        )
        try:
            result = await container.pipeline.ingest(document, max_bytes=body.max_bytes)
        except Exception as e:
            logger.error(f"Ingestion failed for '{body.title}': {e}")
            raise HTTPException(status_code=500, detail=str(e))

        container.invalidate_cache()
        return IngestResponse(
            document_id=result.document_id,
            title=result.title,
            chunks=result.chunk_count,
            degraded_chunks=result.degraded_chunks,
        )

    @app.post("/api/v1/providers/{name}/import", response_model=ImportResponse)
    async def import_from_provider(name: str, body: ImportRequest, request: Request):
        """Search a provider and ingest what it returns."""
        container = _get_container(request)
        provider = next((p for p in container.aggregator.providers if p.name == name), None)
        if provider is None:
            raise HTTPException(status_code=404, detail=f"Unknown provider: {name}")

        options = ProviderSearchOptions(
            limit=body.limit,
            filters=SearchFilters.from_dict(body.filters.to_filters() if body.filters else None),
        )
        outcomes = await provider.import_results(body.query, container.pipeline, options)
        imported = sum(1 for o in outcomes if o.status == "downloaded")
        if imported:
            container.invalidate_cache()

        return ImportResponse(
            provider=name,
            imported=imported,
            failed=len(outcomes) - imported,
            outcomes=[ImportOutcomeModel.model_validate(o.to_dict()) for o in outcomes],
        )

    # -------------------------------------------------------------------------
    # Health and metrics
    # -------------------------------------------------------------------------

    @app.get("/api/v1/providers/health")
    async def providers_health(request: Request):
        """Status of the internal store and every enabled provider."""
        return await _get_container(request).aggregator.source_health()

    @app.get("/api/v1/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        container = _get_container(request)
        try:
            store_health = await asyncio.to_thread(container.aggregator.store.health_check)
            database = "connected" if store_health.get("status") == "healthy" else "disconnected"
        except Exception as e:
            logger.warning(f"Health check: database disconnected: {e}")
            database = "disconnected"

        return HealthResponse(status="ok", version=__version__, database=database)

    @app.get("/api/v1/metrics")
    async def metrics(request: Request):
        """Retrieval and ingestion metrics since startup."""
        return _get_container(request).metrics.get_metrics_dict()

    return app


app = create_app()
