"""Tests for short link resolution."""

import asyncio

import httpx

from notionally.config import ResolverSettings
from notionally.models import ResolutionMethod
from notionally.services.url_resolver import (
    UNRESOLVED_NOTE,
    URLResolver,
    extract_url_from_html,
    extract_urls,
    is_acceptable,
    merge_urls,
    needs_resolution,
)


def resolve(handler, urls):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await URLResolver(client, ResolverSettings()).resolve_all(urls)

    return asyncio.run(run())


class TestResolveAll:
    def test_unshorten_service_result_is_used(self):
        seen = []

        def handler(request):
            seen.append(request)
            assert request.url.host == "unshorten.it"
            assert request.url.params["url"] == "https://lnkd.in/abc123"
            return httpx.Response(200, json={"url": "https://example.com/article"})

        [result] = resolve(handler, ["https://lnkd.in/abc123"])

        assert result.resolved == "https://example.com/article"
        assert result.was_shortened is True
        assert result.method == "unshorten.it"
        assert len(seen) == 1

    def test_regular_urls_pass_through_without_requests(self):
        def handler(request):
            raise AssertionError("no request expected")

        [result] = resolve(handler, ["https://example.com/already-final"])

        assert result.resolved == "https://example.com/already-final"
        assert result.was_shortened is False
        assert result.method is None
        assert result.changed is False

    def test_head_location_used_when_service_returns_another_short_link(self):
        def handler(request):
            if request.url.host == "unshorten.it":
                return httpx.Response(200, json={"url": "https://lnkd.in/other"})
            assert request.method == "HEAD"
            return httpx.Response(301, headers={"Location": "https://target.example/post"})

        [result] = resolve(handler, ["https://lnkd.in/abc"])

        assert result.resolved == "https://target.example/post"
        assert result.method == ResolutionMethod.HEAD_REDIRECT

    def test_get_redirect_used_when_head_has_no_location(self):
        def handler(request):
            if request.url.host == "unshorten.it":
                return httpx.Response(500)
            if request.method == "HEAD":
                return httpx.Response(405)
            return httpx.Response(302, headers={"Location": "https://target.example/from-get"})

        [result] = resolve(handler, ["https://www.linkedin.com/redir/redirect?url=abc"])

        assert result.resolved == "https://target.example/from-get"
        assert result.method == ResolutionMethod.HTTP_REDIRECT

    def test_malformed_service_payload_falls_through_to_head(self):
        seen = []

        def handler(request):
            seen.append(f"{request.method} {request.url.host}")
            if request.url.host == "unshorten.it":
                return httpx.Response(200, json={"url": 42})
            return httpx.Response(301, headers={"Location": "https://example.com/dest"})

        [result] = resolve(handler, ["https://lnkd.in/abc"])

        assert seen == ["GET unshorten.it", "HEAD lnkd.in"]
        assert result.resolved == "https://example.com/dest"
        assert result.method == ResolutionMethod.HEAD_REDIRECT
        assert result.error is None

    def test_unexpected_strategy_error_moves_to_next_strategy(self):
        def handler(request):
            if request.url.host == "unshorten.it":
                raise RuntimeError("transport blew up")
            return httpx.Response(301, headers={"Location": "https://example.com/after-error"})

        [result] = resolve(handler, ["https://lnkd.in/abc"])

        assert result.resolved == "https://example.com/after-error"
        assert result.error is None

    def test_html_interstitial_is_scanned(self):
        page = (
            "<html><body>"
            '<a data-tracking-control-name="external_url_click" '
            'href="https://dest.example/page?a=1&amp;b=2">Continue</a>'
            "</body></html>"
        )

        def handler(request):
            if request.url.host == "unshorten.it":
                raise httpx.ConnectError("service down", request=request)
            if request.method == "HEAD":
                return httpx.Response(200)
            return httpx.Response(200, text=page)

        [result] = resolve(handler, ["https://lnkd.in/xyz"])

        assert result.resolved == "https://dest.example/page?a=1&b=2"
        assert result.method == ResolutionMethod.HTML_SCAN

    def test_unresolvable_link_keeps_original_with_note(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        [result] = resolve(handler, ["https://lnkd.in/dead"])

        assert result.resolved == "https://lnkd.in/dead"
        assert result.was_shortened is True
        assert result.method == ResolutionMethod.UNRESOLVED
        assert result.error is None
        assert result.note == UNRESOLVED_NOTE

    def test_output_matches_input_length_and_order(self):
        def handler(request):
            if request.url.host == "unshorten.it":
                target = request.url.params["url"].rsplit("/", 1)[-1]
                return httpx.Response(200, json={"url": f"https://example.com/{target}"})
            raise httpx.ConnectError("unexpected", request=request)

        urls = [
            "https://lnkd.in/one",
            "https://example.com/plain",
            "https://lnkd.in/two",
            "https://lnkd.in/three",
        ]
        results = resolve(handler, urls)

        assert [entry.original for entry in results] == urls
        assert [entry.resolved for entry in results] == [
            "https://example.com/one",
            "https://example.com/plain",
            "https://example.com/two",
            "https://example.com/three",
        ]
        assert all(entry.resolved for entry in results)

    def test_empty_list(self):
        assert resolve(lambda request: httpx.Response(503), []) == []


class TestHtmlExtraction:
    def test_meta_refresh(self):
        page = '<meta http-equiv="refresh" content="0;url=https://news.example/story">'
        assert extract_url_from_html(page) == "https://news.example/story"

    def test_javascript_location_assignment(self):
        page = '<script>window.location.href = "https://js.example/landing";</script>'
        assert extract_url_from_html(page) == "https://js.example/landing"

    def test_url_parameter_is_decoded(self):
        page = '<a href="/redir?url=https%3A%2F%2Fdecoded.example%2Fpath&trk=abc">go</a>'
        assert extract_url_from_html(page) == "https://decoded.example/path"

    def test_static_assets_are_skipped_in_raw_scan(self):
        page = (
            '<link href="https://cdn.example/styles/app.css">'
            '<img src="https://images.example/logo.png">'
            "Visit https://real.example/article today"
        )
        assert extract_url_from_html(page) == "https://real.example/article"

    def test_host_links_are_ignored(self):
        page = '<a href="https://www.linkedin.com/feed">feed</a> https://static.licdn.com/sc/h/x.js'
        assert extract_url_from_html(page) is None


class TestHelpers:
    def test_needs_resolution(self):
        assert needs_resolution("https://lnkd.in/abc")
        assert needs_resolution("https://www.linkedin.com/redir/redirect?url=x")
        assert not needs_resolution("https://example.com")

    def test_is_acceptable(self):
        assert is_acceptable("https://example.com", "https://lnkd.in/a")
        assert not is_acceptable("", "https://lnkd.in/a")
        assert not is_acceptable("https://lnkd.in/a", "https://lnkd.in/a")
        assert not is_acceptable("https://lnkd.in/b", "https://lnkd.in/a")
        assert not is_acceptable(42, "https://lnkd.in/a")
        assert not is_acceptable(None, "https://lnkd.in/a")

    def test_extract_urls_trims_punctuation(self):
        text = "Read this (https://example.com/a). And https://lnkd.in/xyz, too!"
        assert extract_urls(text) == ["https://example.com/a", "https://lnkd.in/xyz"]

    def test_merge_urls_dedupes_and_drops_blanks(self):
        merged = merge_urls(["https://a.example", " ", "https://b.example"], ["https://a.example", "https://c.example"])
        assert merged == ["https://a.example", "https://b.example", "https://c.example"]
