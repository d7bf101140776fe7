"""
Page Fetcher

Fetches official pages over HTTP for re-crawling.

PRINCIPLES:
===========
1. Failed fetches are first-class results, never exceptions
2. Redirects are followed; the final URL is recorded
3. Raw HTML is kept next to its text form
"""

from __future__ import annotations
from datetime import datetime, timezone
from html.parser import HTMLParser
from typing import List, Optional, Tuple
import hashlib
import re

import httpx

from kb.config import KBConfig
from kb.observability import get_logger

from .contracts import FetchedPage, FetchResult, FetchStatus


logger = get_logger(__name__)

_BLANK_LINES = re.compile(r'\n\s*\n+')


class TextStripper(HTMLParser):
    """HTML tag stripper that also remembers the <title>."""

    SKIP_TAGS = {'script', 'style', 'head', 'meta', 'link', 'noscript'}
    BLOCK_TAGS = {'p', 'div', 'br', 'li', 'tr', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'section', 'article'}

    def __init__(self):
        super().__init__()
        self.fed: List[str] = []
        self.title: Optional[str] = None
        self._skip_depth = 0
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        if tag == 'title':
            self._in_title = True
        elif tag in self.SKIP_TAGS:
            self._skip_depth += 1
        elif tag in self.BLOCK_TAGS:
            self.fed.append('\n')

    def handle_endtag(self, tag):
        if tag == 'title':
            self._in_title = False
        elif tag in self.SKIP_TAGS and self._skip_depth:
            self._skip_depth -= 1
        elif tag in self.BLOCK_TAGS:
            self.fed.append('\n')

    def handle_data(self, data):
        if self._in_title:
            self.title = ((self.title or '') + data).strip()
        elif not self._skip_depth:
            self.fed.append(data)

    def get_data(self) -> str:
        text = ''.join(self.fed)
        lines = [' '.join(line.split()) for line in text.splitlines()]
        return _BLANK_LINES.sub('\n\n', '\n'.join(lines)).strip()


def html_to_text(html: str) -> Tuple[str, Optional[str]]:
    """(text, title) of an HTML document."""
    stripper = TextStripper()
    stripper.feed(html)
    stripper.close()
    return stripper.get_data(), stripper.title


class PageFetcher:
    """
    Fetches a URL and returns (FetchResult, FetchedPage | None).

    GUARANTEES:
    ===========
    1. Timeouts, network errors and non-200 responses return a FetchResult
       with the matching FetchStatus and no page
    2. A page is returned only for HTTP 200
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "ProvenanceKB/1.0",
        transport: Optional[httpx.BaseTransport] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._async_transport = async_transport

    @classmethod
    def from_config(cls, config: KBConfig, **kwargs) -> PageFetcher:
        return cls(timeout=config.fetch_timeout, user_agent=config.user_agent, **kwargs)

    def fetch_sync(self, url: str) -> Tuple[FetchResult, Optional[FetchedPage]]:
        attempted_at = datetime.now(timezone.utc)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(
                    url,
                    headers={'User-Agent': self._user_agent},
                    follow_redirects=True
                )
        except httpx.TimeoutException:
            return self._failure(url, attempted_at, FetchStatus.TIMEOUT, f"Timeout after {self._timeout}s"), None
        except httpx.HTTPError as e:
            return self._failure(url, attempted_at, FetchStatus.NETWORK_ERROR, str(e)), None
        return self._from_response(url, attempted_at, response)

    async def fetch(self, url: str) -> Tuple[FetchResult, Optional[FetchedPage]]:
        """Async version of fetch_sync."""
        attempted_at = datetime.now(timezone.utc)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._async_transport) as client:
                response = await client.get(
                    url,
                    headers={'User-Agent': self._user_agent},
                    follow_redirects=True
                )
        except httpx.TimeoutException:
            return self._failure(url, attempted_at, FetchStatus.TIMEOUT, f"Timeout after {self._timeout}s"), None
        except httpx.HTTPError as e:
            return self._failure(url, attempted_at, FetchStatus.NETWORK_ERROR, str(e)), None
        return self._from_response(url, attempted_at, response)

    def _from_response(
        self,
        url: str,
        attempted_at: datetime,
        response: httpx.Response
    ) -> Tuple[FetchResult, Optional[FetchedPage]]:
        completed_at = datetime.now(timezone.utc)
        if response.status_code != 200:
            logger.warning("fetch failed", extra={"url": url, "http_status": response.status_code})
            result = FetchResult(
                result_id=self._generate_result_id(url, attempted_at),
                url=url,
                attempted_at=attempted_at,
                completed_at=completed_at,
                status=FetchStatus.HTTP_ERROR,
                http_status=response.status_code,
                error_message=f"HTTP {response.status_code}"
            )
            return result, None

        body = response.text
        content_type = response.headers.get('content-type', '').lower()
        if 'html' in content_type or body.lstrip().lower().startswith(('<!doctype html', '<html')):
            markdown, title = html_to_text(body)
            html = body
        else:
            markdown, title, html = body, None, None

        page = FetchedPage(
            url=url,
            final_url=str(response.url),
            http_status=response.status_code,
            markdown=markdown,
            fetched_at=completed_at,
            html=html,
            title=title,
        )
        result = FetchResult(
            result_id=self._generate_result_id(url, attempted_at),
            url=url,
            attempted_at=attempted_at,
            completed_at=completed_at,
            status=FetchStatus.SUCCESS,
            http_status=response.status_code,
        )
        logger.debug("page fetched", extra={"url": url, "final_url": page.final_url, "chars": len(markdown)})
        return result, page

    def _failure(self, url: str, attempted_at: datetime, status: FetchStatus, message: str) -> FetchResult:
        logger.warning("fetch failed", extra={"url": url, "status": status.value, "error": message})
        return FetchResult(
            result_id=self._generate_result_id(url, attempted_at),
            url=url,
            attempted_at=attempted_at,
            completed_at=datetime.now(timezone.utc),
            status=status,
            error_message=message
        )

    def _generate_result_id(self, url: str, attempted_at: datetime) -> str:
        content = f"{url}|{attempted_at.isoformat()}"
        return f"fetch_{hashlib.sha256(content.encode()).hexdigest()[:16]}"
