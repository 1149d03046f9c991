from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, quote, urlsplit

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from clarity.config import settings
from clarity.models.answer import Source
from clarity.tools import content_extractor


def build_search_url(query: str) -> str:
    return settings.search_url_template.format(query=quote(query, safe=""))


def _unwrap_redirect(href: str, prefix: str) -> str:
    """Recover the destination URL from a result-page redirect link."""
    params = parse_qs(urlsplit(href).query)
    values = params.get("q")
    if values:
        return values[0]
    return href[len(prefix):].split("&")[0]


def _hostname(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def select_links(
    html: str,
    count: int,
    excluded_domains: list[str] | None = None,
) -> list[str]:
    """Pick up to ``count`` result links, one per hostname, in page order."""
    excluded = settings.excluded_domain_list if excluded_domains is None else excluded_domains
    prefix = settings.search_redirect_prefix
    soup = BeautifulSoup(html, "html.parser")

    links: list[str] = []
    seen_hosts: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        if len(links) >= count:
            break
        href = anchor["href"]
        if not href.startswith(prefix):
            continue
        link = _unwrap_redirect(href, prefix)
        host = _hostname(link)
        if not host:
            continue
        if any(blocked in host for blocked in excluded):
            continue
        if host in seen_hosts:
            continue
        seen_hosts.add(host)
        links.append(link)
    return links


async def _fetch_results_page(client: httpx.AsyncClient, query: str) -> str:
    response = await client.get(
        build_search_url(query),
        headers={"User-Agent": settings.user_agent},
    )
    response.raise_for_status()
    return response.text


async def _extract_all(client: httpx.AsyncClient, links: list[str]) -> list[Source]:
    tasks = [content_extractor.extract(link, client=client) for link in links]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    sources: list[Source] = []
    for link, result in zip(links, results):
        if isinstance(result, Source):
            sources.append(result)
        elif isinstance(result, BaseException):
            logger.warning(f"Extraction raised for {link}: {result}")
    return sources


async def discover(
    query: str,
    count: int | None = None,
    *,
    excluded_domains: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[Source]:
    """Search the web for ``query`` and return readable sources in result order.

    Discovery is best-effort: a failed search yields an empty list and
    individual pages that cannot be extracted are left out.
    """
    limit = settings.source_count if count is None else count
    if limit <= 0:
        return []

    async def _run(active: httpx.AsyncClient) -> list[Source]:
        try:
            html = await _fetch_results_page(active, query)
            links = select_links(html, limit, excluded_domains)
        except Exception as e:
            logger.warning(f"Source discovery failed for {query[:100]!r}: {e}")
            return []
        logger.info(f"Selected {len(links)} source links for {query[:100]!r}")
        return await _extract_all(active, links)

    if client is not None:
        return await _run(client)
    async with httpx.AsyncClient(
        timeout=settings.fetch_timeout_seconds,
        follow_redirects=True,
    ) as own_client:
        return await _run(own_client)
