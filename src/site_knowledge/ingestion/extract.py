"""
HTML page fetching and content extraction.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from ..core.errors import FetchError

BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "iframe", "noscript"]

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class PageData:
    """Cleaned text and descriptive metadata of one page."""
    url: str
    title: str
    description: str
    content: str


async def fetch_page(client: httpx.AsyncClient, url: str) -> str:
    """
    GET a page and return its HTML.

    Raises
    ------
    FetchError
        On transport errors or a non-2xx status.
    """
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        raise FetchError(url, type(exc).__name__) from exc
    if not response.is_success:
        raise FetchError(url, f"HTTP {response.status_code}")
    return response.text


def _meta_content(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def extract_page(url: str, html: str) -> PageData:
    """
    Strip boilerplate and pull title, description and body text from HTML.

    Title comes from ``og:title``, then ``<title>``, then the URL.
    Description comes from ``og:description``, then ``meta[name=description]``.
    Body text is whitespace-collapsed; a page with no text yields ``""``.
    """
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()

    title = _meta_content(soup, property="og:title")
    if not title and soup.title is not None:
        title = soup.title.get_text(strip=True)
    title = title or url

    description = _meta_content(soup, property="og:description") or _meta_content(
        soup, name="description"
    )

    body = soup.body if soup.body is not None else soup
    content = _WHITESPACE.sub(" ", body.get_text(" ")).strip()

    return PageData(url=url, title=title, description=description, content=content)
