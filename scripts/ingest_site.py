"""
Crawl the website into the knowledge base from the shell.

Usage:
    python scripts/ingest_site.py [--sitemap URL] [--clear]
"""

import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from site_knowledge.config import settings
from site_knowledge.core.logging import configure_logging
from site_knowledge.db.knowledge_store import KnowledgeStore
from site_knowledge.db.session import create_session_factory, init_db
from site_knowledge.embeddings.embedder import Embedder
from site_knowledge.ingestion.pipeline import WebsiteIngestor


async def main(sitemap_url, clear_existing):
    configure_logging(settings.log_level)

    print("Initializing database...")
    engine, session_factory = create_session_factory(settings.database_url)
    try:
        await init_db(engine)
        ingestor = WebsiteIngestor(KnowledgeStore(session_factory), Embedder(), settings=settings)

        print("Starting ingestion...")
        stats = await ingestor.run(sitemap_url=sitemap_url, clear_existing=clear_existing)
    finally:
        await engine.dispose()

    print(
        f"Done! {stats.urls_processed}/{stats.urls_found} pages, "
        f"{stats.chunks_created} chunks, {stats.errors} errors."
    )
    return 0 if stats.errors == 0 else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest the website into the knowledge base.")
    parser.add_argument("--sitemap", default=None, help="Override the configured sitemap URL")
    parser.add_argument("--clear", action="store_true", help="Remove existing website content first")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.sitemap, args.clear)))
