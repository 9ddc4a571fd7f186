"""
Batch ingestion of legal documents into the research store.

Processes PDFs, text, markdown and HTML files in a directory (and any URLs
given) through the ingestion pipeline:
- Parser: LegalDocumentParser (PyMuPDF4LLM for PDFs, BeautifulSoup for HTML)
- Chunker: LegalChunker with section-aware splitting
- Embeddings: Voyage AI voyage-law-2 (or Cohere, per EMBEDDING_PROVIDER)
- Storage: PostgreSQL + pgvector

Document ids are derived from the file path or URL, so re-running the script
replaces each document's chunks instead of duplicating them.

Usage:
    python ingest_documents.py --dir ~/legal-data --key-layout
    python ingest_documents.py --dir ./statutes --jurisdiction US-CA --document-type STATUTE
    python ingest_documents.py --url https://supreme.justia.com/cases/federal/us/384/436/
"""

import sys
import time
import uuid
import asyncio
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {".pdf", ".txt", ".md", ".markdown", ".html", ".htm"}


def stable_document_id(identity: str) -> str:
    """Same path or URL, same document id."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, identity))


def collect_files(input_dir: Path, recursive: bool) -> list[Path]:
    pattern = "**/*" if recursive else "*"
    return sorted(
        p for p in input_dir.glob(pattern)
        if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
    )


async def run(args) -> int:
    from execution.legal_research.document_parser import LegalDocumentParser, metadata_from_key
    from execution.legal_research.embeddings import get_embedding_service
    from execution.legal_research.ingestion import IngestionPipeline
    from execution.legal_research.settings import ResearchSettings
    from execution.legal_research.vector_store import VectorStore, VectorStoreConfig

    settings = ResearchSettings.from_env()

    files = collect_files(Path(args.dir), args.recursive or args.key_layout) if args.dir else []
    urls = args.url or []
    total = len(files) + len(urls)
    if total == 0:
        logger.error("Nothing to ingest: no supported files found and no URLs given")
        return 1
    logger.info(f"Found {len(files)} files and {len(urls)} URLs")

    api_key = settings.voyage_api_key if settings.embedding_provider == "voyage" else settings.cohere_api_key
    embedding_service = get_embedding_service(
        settings.embedding_provider, model=settings.embedding_model, api_key=api_key
    )
    store = VectorStore(VectorStoreConfig(
        connection_string=settings.database_url,
        embedding_dimensions=embedding_service.dimensions,
    ))
    store.connect()
    store.initialize_schema()

    pipeline = IngestionPipeline(
        store, embedding_service, max_chunk_bytes=args.max_bytes or settings.max_chunk_bytes
    )
    parser = LegalDocumentParser()

    overrides = {
        k: v for k, v in {
            "jurisdiction": args.jurisdiction,
            "document_type": args.document_type,
            "practice_area": args.practice_area,
        }.items() if v
    }

    logger.info("Pipeline initialized:")
    logger.info(f"  Embedding provider: {settings.embedding_provider} ({embedding_service.config.model})")
    logger.info(f"  Max chunk bytes: {pipeline.max_chunk_bytes}")

    start_time = time.time()
    total_chunks = 0
    degraded_chunks = 0
    success_count = 0
    fail_count = 0

    for i, path in enumerate(files):
        logger.info(f"[{i+1}/{total}] Processing: {path.name}")
        try:
            fields = dict(overrides)
            if args.key_layout:
                input_dir = Path(args.dir)
                storage_key = f"{input_dir.resolve().name}/{path.relative_to(input_dir).as_posix()}"
                for key, value in metadata_from_key(storage_key).items():
                    if key != "title":
                        fields.setdefault(key, value)
            document = parser.parse(
                str(path), document_id=stable_document_id(str(path.resolve())), **fields
            )
            result = await pipeline.ingest(document)
        except Exception as e:
            fail_count += 1
            logger.error(f"  FAILED: {e}")
            continue
        total_chunks += result.chunk_count
        degraded_chunks += result.degraded_chunks
        success_count += 1
        logger.info(f"  -> {result.chunk_count} chunks")

    for j, url in enumerate(urls):
        logger.info(f"[{len(files)+j+1}/{total}] Fetching: {url}")
        try:
            document = await asyncio.to_thread(
                parser.parse_url, url, document_id=stable_document_id(url), **overrides
            )
            result = await pipeline.ingest(document)
        except Exception as e:
            fail_count += 1
            logger.error(f"  FAILED: {e}")
            continue
        total_chunks += result.chunk_count
        degraded_chunks += result.degraded_chunks
        success_count += 1
        logger.info(f"  -> {result.chunk_count} chunks")

    elapsed = time.time() - start_time
    store.close()

    # Summary
    print("\n" + "=" * 60)
    print("INGESTION COMPLETE")
    print("=" * 60)
    print(f"Documents processed: {success_count}/{total} ({fail_count} failed)")
    print(f"Total chunks:        {total_chunks}")
    print(f"Degraded chunks:     {degraded_chunks}")
    print(f"Time elapsed:        {elapsed:.1f}s")
    print("=" * 60)

    return 0 if fail_count == 0 else 2


def main():
    arg_parser = argparse.ArgumentParser(description="Ingest legal documents")
    arg_parser.add_argument("--dir", type=str, help="Directory containing documents")
    arg_parser.add_argument("--url", action="append", help="Document URL (repeatable)")
    arg_parser.add_argument("--recursive", action="store_true", help="Recurse into subdirectories")
    arg_parser.add_argument(
        "--key-layout",
        action="store_true",
        help="Derive metadata from <root>/<jurisdiction>/<type>/<year>/<file> paths (implies --recursive)",
    )
    arg_parser.add_argument("--jurisdiction", type=str, help="Jurisdiction for every document")
    arg_parser.add_argument("--document-type", type=str, help="Document type for every document")
    arg_parser.add_argument("--practice-area", type=str, help="Practice area for every document")
    arg_parser.add_argument("--max-bytes", type=int, help="Chunk byte ceiling (default: MAX_CHUNK_BYTES)")
    args = arg_parser.parse_args()

    if args.dir and not Path(args.dir).is_dir():
        logger.error(f"Directory not found: {args.dir}")
        sys.exit(1)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
