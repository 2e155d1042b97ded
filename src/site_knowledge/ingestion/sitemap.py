"""
Sitemap discovery for website ingestion.

Reads a ``<urlset><url><loc>`` sitemap and keeps the URLs matching the
configured path pattern. Ingestion must make progress even when the sitemap
is unavailable, so every failure resolves to the fallback URL list.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Pattern, Sequence, Union

import httpx
from bs4 import BeautifulSoup

from ..core.errors import FetchError

logger = logging.getLogger("knowledge.ingest.sitemap")


def parse_sitemap(xml_text: Union[str, bytes]) -> List[str]:
    """
    Return every ``<loc>`` found under a ``<url>`` entry, in document order.
    """
    if isinstance(xml_text, str):
        # lxml rejects str input that carries an encoding declaration
        xml_text = xml_text.encode("utf-8")
    soup = BeautifulSoup(xml_text, "xml")
    urls: List[str] = []
    for entry in soup.find_all("url"):
        loc = entry.find("loc")
        if loc is None:
            continue
        value = loc.get_text(strip=True)
        if value:
            urls.append(value)
    return urls


def filter_urls(urls: Sequence[str], pattern: Union[str, Pattern[str]]) -> List[str]:
    """
    Keep URLs matching ``pattern``, dropping duplicates but keeping order.
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    seen = set()
    kept: List[str] = []
    for url in urls:
        if url in seen or not regex.search(url):
            continue
        seen.add(url)
        kept.append(url)
    return kept


async def download_sitemap(client: httpx.AsyncClient, sitemap_url: str) -> bytes:
    """
    GET the sitemap document.

    Raises
    ------
    FetchError
        On transport errors or a non-2xx status.
    """
    try:
        response = await client.get(sitemap_url)
    except httpx.HTTPError as exc:
        raise FetchError(sitemap_url, type(exc).__name__) from exc
    if not response.is_success:
        raise FetchError(sitemap_url, f"HTTP {response.status_code}")
    return response.content


async def fetch_sitemap_urls(
    client: httpx.AsyncClient,
    sitemap_url: str,
    pattern: Union[str, Pattern[str]],
    fallback_urls: Sequence[str],
) -> List[str]:
    """
    Resolve the list of pages to ingest.

    Falls back to ``fallback_urls`` when the sitemap cannot be fetched or
    parsed, or when no URL survives the filter.
    """
    logger.info("Fetching sitemap: %s", sitemap_url)

    try:
        xml_text = await download_sitemap(client, sitemap_url)
        urls = filter_urls(parse_sitemap(xml_text), pattern)
    except FetchError as exc:
        logger.warning("Sitemap unavailable (%s), using fallback URLs", exc.reason)
        return _fallback(fallback_urls)
    except Exception:
        logger.exception("Failed to parse sitemap %s, using fallback URLs", sitemap_url)
        return _fallback(fallback_urls)

    if not urls:
        logger.warning("Sitemap %s listed no matching URLs, using fallback URLs", sitemap_url)
        return _fallback(fallback_urls)

    logger.info("Found %d URLs in sitemap", len(urls))
    return urls


def _fallback(fallback_urls: Optional[Sequence[str]]) -> List[str]:
    urls = list(fallback_urls or [])
    logger.info("Using %d fallback URLs", len(urls))
    return urls
