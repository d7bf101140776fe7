"""
Page Fetcher Tests

HTTP behaviour against httpx.MockTransport: successes, failures as
results, redirects, and HTML to text conversion.
"""

import asyncio

import httpx

from ingestion import FetchStatus, PageFetcher, html_to_text


PORTAL_URL = "https://www.epassport.gov.bd/onboarding"

PORTAL_HTML = """<!DOCTYPE html>
<html>
<head><title>ePassport Portal</title><style>p { color: red; }</style></head>
<body>
<h1>Apply online</h1>
<p>Fill in   the application form.</p>
<script>var tracking = 1;</script>
<ul><li>Bring your NID</li><li>Pay the fee</li></ul>
</body>
</html>"""


def fetcher_for(handler):
    return PageFetcher(timeout=5.0, transport=httpx.MockTransport(handler))


def html_response(request):
    return httpx.Response(200, text=PORTAL_HTML, headers={"content-type": "text/html; charset=utf-8"})


class TestHtmlToText:

    def test_strips_tags_and_keeps_title(self):
        text, title = html_to_text(PORTAL_HTML)
        assert title == "ePassport Portal"
        assert "Apply online" in text
        assert "Fill in the application form." in text
        assert "tracking" not in text
        assert "color" not in text

    def test_block_elements_become_lines(self):
        text, _ = html_to_text("<p>One</p><p>Two</p>")
        assert text.splitlines() == ["One", "", "Two"]

    def test_no_title(self):
        assert html_to_text("<p>x</p>")[1] is None


class TestFetchSync:

    def test_html_page(self):
        result, page = fetcher_for(html_response).fetch_sync(PORTAL_URL)
        assert result.success
        assert result.http_status == 200
        assert page.title == "ePassport Portal"
        assert page.html == PORTAL_HTML
        assert page.content == page.markdown
        assert "Bring your NID" in page.content
        assert page.fetched_at_iso.endswith("Z")

    def test_plain_text_page(self):
        def handler(request):
            return httpx.Response(200, text="Notice 34", headers={"content-type": "text/plain"})

        _, page = fetcher_for(handler).fetch_sync(PORTAL_URL)
        assert page.content == "Notice 34"
        assert page.html is None
        assert page.title is None

    def test_sends_user_agent(self):
        seen = []

        def handler(request):
            seen.append(request.headers["user-agent"])
            return httpx.Response(200, text="ok")

        PageFetcher(user_agent="Tester/2.0", transport=httpx.MockTransport(handler)).fetch_sync(PORTAL_URL)
        assert seen == ["Tester/2.0"]

    def test_redirect_records_final_url(self):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": PORTAL_URL})
            return html_response(request)

        result, page = fetcher_for(handler).fetch_sync("https://www.epassport.gov.bd/old")
        assert result.success
        assert page.url == "https://www.epassport.gov.bd/old"
        assert page.final_url == PORTAL_URL

    def test_http_error_is_a_result(self):
        result, page = fetcher_for(lambda request: httpx.Response(404)).fetch_sync(PORTAL_URL)
        assert page is None
        assert result.status is FetchStatus.HTTP_ERROR
        assert result.http_status == 404
        assert result.error_message == "HTTP 404"

    def test_timeout_is_a_result(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result, page = fetcher_for(handler).fetch_sync(PORTAL_URL)
        assert page is None
        assert result.status is FetchStatus.TIMEOUT
        assert result.error_message == "Timeout after 5.0s"

    def test_network_error_is_a_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result, page = fetcher_for(handler).fetch_sync(PORTAL_URL)
        assert page is None
        assert result.status is FetchStatus.NETWORK_ERROR
        assert "connection refused" in result.error_message

    def test_result_ids_are_prefixed(self):
        result, _ = fetcher_for(html_response).fetch_sync(PORTAL_URL)
        assert result.result_id.startswith("fetch_")
        assert result.duration_ms >= 0


class TestFetchAsync:

    def test_html_page(self):
        fetcher = PageFetcher(async_transport=httpx.MockTransport(html_response))
        result, page = asyncio.run(fetcher.fetch(PORTAL_URL))
        assert result.success
        assert page.title == "ePassport Portal"

    def test_http_error(self):
        fetcher = PageFetcher(async_transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        result, page = asyncio.run(fetcher.fetch(PORTAL_URL))
        assert page is None
        assert result.status is FetchStatus.HTTP_ERROR
