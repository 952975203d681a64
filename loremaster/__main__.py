"""
Loremaster CLI entry point.

Utility commands for ingesting rulebooks into a campaign, embedding them,
searching them and asking RAG-backed questions.
"""

import argparse
import asyncio
import sys
import time
from pathlib import Path

from loremaster import __version__
from loremaster.config.logging import get_logger, setup_logging
from loremaster.config.settings import Settings, load_settings
from loremaster.rag.base import MANUAL_KINDS
from loremaster.rag.components import RAGComponents
from loremaster.rag.embedding_pipeline import EmbeddingJobStatus
from loremaster.rag.searcher import format_chunks_for_context


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="loremaster",
        description="Rulebook retrieval and RAG answers for LLM-driven tabletop campaigns",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"Loremaster {__version__}")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    campaign_args = argparse.ArgumentParser(add_help=False)
    campaign_args.add_argument("--setting", required=True, help="Setting name, e.g. 'Eberron'")
    campaign_args.add_argument("--campaign", required=True, help="Campaign name within the setting")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("config", help="Show current configuration")

    ingest_parser = subparsers.add_parser(
        "ingest", parents=[campaign_args], help="Chunk a rulebook PDF into a campaign"
    )
    ingest_parser.add_argument("source_path", type=Path, help="Path to the PDF")
    ingest_parser.add_argument("--kind", choices=MANUAL_KINDS, required=True, help="Manual kind")
    ingest_parser.add_argument(
        "--embed", action="store_true", help="Create embeddings right after chunking"
    )

    embed_parser = subparsers.add_parser(
        "embed", parents=[campaign_args], help="Create embeddings for chunked manuals"
    )
    embed_parser.add_argument(
        "--kind",
        choices=MANUAL_KINDS,
        default=None,
        help="Rebuild embeddings for one manual (default: embed every manual that has none)",
    )

    search_parser = subparsers.add_parser(
        "search", parents=[campaign_args], help="Search a campaign manual"
    )
    search_parser.add_argument("query", help='Search query, e.g. "grappling rules"')
    search_parser.add_argument("--kind", choices=MANUAL_KINDS, required=True, help="Manual kind")
    search_parser.add_argument(
        "--keyword-only", action="store_true", help="Skip vector search (no embedding model load)"
    )

    ask_parser = subparsers.add_parser(
        "ask", parents=[campaign_args], help="Ask a question answered with manual lookups"
    )
    ask_parser.add_argument("prompt", help="Question or message for the model")
    ask_parser.add_argument(
        "--keyword-only", action="store_true", help="Skip vector search (no embedding model load)"
    )

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== Loremaster Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    logger.info(f"LLM Max Retries: {settings.llm.max_retries}")
    logger.info(f"\nEmbedding Provider: {settings.embedding.provider}")
    logger.info(f"Embedding Model: {settings.embedding.model}")
    logger.info(f"Embedding Batch Size: {settings.embedding.batch_size}")
    logger.info(f"\nMax Chunk Tokens: {settings.rag.max_chunk_tokens}")
    logger.info(f"Vector Top K / Threshold: {settings.rag.vector_top_k} / {settings.rag.vector_threshold}")
    logger.info(f"Rerank Trigger / Candidates: {settings.rag.rerank_trigger} / {settings.rag.rerank_candidates}")
    logger.info(f"RAG Max Iterations: {settings.rag.max_iterations}")
    logger.info(f"\nStorage Root: {settings.storage.root}")
    return 0


def _log_progress(status: EmbeddingJobStatus) -> None:
    logger = get_logger(__name__)
    if status.error:
        logger.error(f"  Embedding failed: {status.error}")
    else:
        logger.info(f"  Embedded {status.completed}/{status.total} chunks")


async def cmd_ingest(args, settings: Settings) -> int:
    """Chunk a PDF into a campaign, optionally embedding it."""
    logger = get_logger(__name__)

    if not args.source_path.is_file():
        logger.error(f"Source file does not exist: {args.source_path}")
        return 1

    factory = RAGComponents(settings)
    store = factory.create_chunk_store()
    pipeline = factory.create_ingestion_pipeline(store)

    start_time = time.time()
    try:
        manual = await pipeline.ingest_manual(
            args.source_path,
            args.setting,
            args.campaign,
            args.kind,
            progress_callback=lambda message: logger.info(f"  {message}"),
        )

        if args.embed:
            async with factory.create_embedding_backend() as backend:
                embedding_pipeline = await factory.create_embedding_pipeline(
                    backend, store, args.setting, args.campaign, args.kind
                )
                await embedding_pipeline.clear_embeddings()
                await embedding_pipeline.create_embeddings_for_manual(_log_progress)
    except Exception as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        return 1

    elapsed = time.time() - start_time
    logger.info(
        f"\n✓ Ingested {manual.file_name}: {len(manual.chunks)} chunks "
        f"from {manual.total_pages} pages in {elapsed:.1f}s"
    )
    return 0


async def cmd_embed(args, settings: Settings) -> int:
    """Create embeddings for one or all chunked manuals of a campaign."""
    logger = get_logger(__name__)
    factory = RAGComponents(settings)
    store = factory.create_chunk_store()

    try:
        async with factory.create_embedding_backend() as backend:
            if args.kind:
                pipeline = await factory.create_embedding_pipeline(
                    backend, store, args.setting, args.campaign, args.kind
                )
                await pipeline.clear_embeddings()
                await pipeline.create_embeddings_for_manual(_log_progress)
                embedded = [args.kind]
            else:
                embedded = await factory.ensure_embeddings(
                    backend, store, args.setting, args.campaign, _log_progress
                )
    except Exception as e:
        logger.error(f"Embedding failed: {e}", exc_info=True)
        return 1

    if embedded:
        logger.info(f"✓ Embedded manuals: {', '.join(embedded)}")
    else:
        logger.info("Nothing to embed")
    return 0


async def _build_searcher(factory: RAGComponents, args, backend):
    store = factory.create_chunk_store()
    return await factory.create_searcher(
        store, factory.create_text_backend(), args.setting, args.campaign, backend
    )


async def cmd_search(args, settings: Settings) -> int:
    """Search one manual and print the matching sections."""
    logger = get_logger(__name__)
    factory = RAGComponents(settings)

    try:
        if args.keyword_only:
            searcher = await _build_searcher(factory, args, None)
            result = await searcher.search(args.query, args.setting, args.campaign, args.kind)
        else:
            async with factory.create_embedding_backend() as backend:
                searcher = await _build_searcher(factory, args, backend)
                result = await searcher.search(args.query, args.setting, args.campaign, args.kind)
    except Exception as e:
        logger.error(f"Search failed: {e}", exc_info=True)
        return 1

    if not result.chunks:
        print(f'No relevant information found in the {args.kind} manual for "{args.query}"')
        return 0

    print(f"\n=== {result.total_matches} {args.kind} manual sections for {args.query!r} ===\n")
    print(format_chunks_for_context(result.chunks))
    return 0


async def cmd_ask(args, settings: Settings) -> int:
    """Run the full RAG loop for one prompt."""
    logger = get_logger(__name__)
    factory = RAGComponents(settings)

    async def run(backend):
        searcher = await _build_searcher(factory, args, backend)
        orchestrator = factory.create_orchestrator(factory.create_text_backend(), searcher)
        return await orchestrator.generate_with_rag(args.prompt, args.setting, args.campaign)

    try:
        if args.keyword_only:
            response = await run(None)
        else:
            async with factory.create_embedding_backend() as backend:
                response = await run(backend)
    except Exception as e:
        logger.error(f"RAG generation failed: {e}", exc_info=True)
        return 1

    print(response.final_response)
    if response.function_calls_used:
        print("\n--- Manual lookups ---")
        for call in response.function_calls_used:
            print(f"  {call.name}: {call.args.get('searchQuery', '')}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "ingest":
        return asyncio.run(cmd_ingest(args, settings))
    elif args.command == "embed":
        return asyncio.run(cmd_embed(args, settings))
    elif args.command == "search":
        return asyncio.run(cmd_search(args, settings))
    elif args.command == "ask":
        return asyncio.run(cmd_ask(args, settings))
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
