"""Expansion of shortened and redirect-wrapped links found in posts."""

from __future__ import annotations

import html
import logging
import re
from typing import Awaitable, Callable, Iterable, Sequence
from urllib.parse import unquote, urljoin

import httpx

from ..config import ResolverSettings
from ..errors import ResolutionError
from ..models import ResolutionMethod, ResolvedUrl
from ..utils.concurrency import run_bounded

logger = logging.getLogger(__name__)

SHORT_LINK_MARKERS = ("lnkd.in", "linkedin.com/redir", "linkedin.com/safety/go")
HOST_MARKERS = ("linkedin.com", "lnkd.in", "licdn.com")
UNRESOLVED_NOTE = "LinkedIn uses JavaScript redirects that require browser execution"

# Ordered from most to least specific; the first acceptable match wins.
HTML_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"""<meta[^>]*http-equiv=["']refresh["'][^>]*content=["']\s*\d+\s*;\s*url=([^"']+)["']""", re.I),
    re.compile(r"""window\.location\.href\s*=\s*["']([^"']+)["']"""),
    re.compile(r"""(?:window\.)?location\.replace\(\s*["']([^"']+)["']\s*\)"""),
    re.compile(r"""data-tracking-control-name=["']external_url_click["'][^>]*href=["']([^"']+)["']""", re.I),
    re.compile(r"""data-external-url=["']([^"']+)["']"""),
    re.compile(r"""externalUrl["']\s*:\s*["']([^"']+)["']"""),
    re.compile(r'"url"\s*:\s*"(https?://[^"]+)"'),
    re.compile(r"""href=["'](https?://(?!(?:www\.)?linkedin\.com)[^"']+)["']""", re.I),
    re.compile(r"[?&]url=([^&\"'\s]+)"),
)
RAW_URL_PATTERN = re.compile(
    r"https?://(?!(?:www\.)?linkedin\.com|lnkd\.in|static\.licdn\.com|licdn\.com)"
    r"[a-zA-Z0-9][a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=%]+"
)
STATIC_ASSET_PATTERN = re.compile(r"\.(?:css|js|png|jpe?g|gif|svg|ico|woff2?|ttf|eot)$", re.I)
TEXT_URL_PATTERN = re.compile(r"https?://[^\s<>\"']+")

Candidate = tuple[ResolutionMethod, str]
Strategy = Callable[[str], Awaitable["Candidate | None"]]


def needs_resolution(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in SHORT_LINK_MARKERS)


def is_acceptable(candidate: str | None, original: str) -> bool:
    """A resolution counts only if it is non-empty, new, and not another short link."""
    if not isinstance(candidate, str) or not candidate.strip():
        return False
    return candidate != original and not needs_resolution(candidate)


def is_static_asset(url: str) -> bool:
    path = url.split("?", 1)[0].split("#", 1)[0]
    return bool(STATIC_ASSET_PATTERN.search(path)) or any(
        marker in url for marker in ("/sc/h/", "/aero-v1/", "static.")
    )


def _points_at_host(url: str) -> bool:
    return any(marker in url.lower() for marker in HOST_MARKERS)


def _decode_candidate(raw: str) -> str:
    candidate = html.unescape(raw.strip())
    if "%3A%2F%2F" in candidate.upper() or "%2F" in candidate.upper():
        candidate = unquote(candidate)
    return candidate


def extract_url_from_html(document: str) -> str | None:
    """Find the external destination embedded in an interstitial page, if any."""
    for index, pattern in enumerate(HTML_PATTERNS, start=1):
        match = pattern.search(document)
        if not match:
            continue
        candidate = _decode_candidate(match.group(1))
        if candidate.startswith("http") and not _points_at_host(candidate) and not is_static_asset(candidate):
            logger.debug("HTML pattern #%s matched %s", index, candidate)
            return candidate

    for match in RAW_URL_PATTERN.finditer(document):
        candidate = html.unescape(match.group(0))
        if not is_static_asset(candidate) and not _points_at_host(candidate):
            return candidate
    return None


def extract_urls(text: str | None) -> list[str]:
    """Pull http(s) links out of free text, trimming trailing punctuation."""
    if not text:
        return []
    return [match.rstrip(".,;:!?)]}") for match in TEXT_URL_PATTERN.findall(text)]


def merge_urls(*groups: Iterable[str]) -> list[str]:
    """Concatenate link lists, dropping blanks and repeats while keeping first-seen order."""
    seen: set[str] = set()
    merged: list[str] = []
    for group in groups:
        for url in group:
            cleaned = url.strip() if url else ""
            if cleaned and cleaned not in seen:
                seen.add(cleaned)
                merged.append(cleaned)
    return merged


class URLResolver:
    """Resolve short links through a fixed, priority-ordered chain of strategies."""

    def __init__(self, client: httpx.AsyncClient, settings: ResolverSettings) -> None:
        self._client = client
        self._settings = settings
        self._strategies: tuple[tuple[str, Strategy], ...] = (
            ("unshorten-service", self._via_unshorten_service),
            ("head", self._via_head),
            ("get", self._via_get),
        )

    async def resolve_all(self, urls: Sequence[str]) -> list[ResolvedUrl]:
        """Resolve every URL; output matches input length and order and never raises."""
        if not urls:
            return []
        logger.info("Resolving %s URL(s)", len(urls))
        return await run_bounded(list(urls), self._resolve_safely, self._settings.concurrency)

    async def _resolve_safely(self, url: str, index: int) -> ResolvedUrl:
        try:
            return await self.resolve(url)
        except Exception as exc:
            logger.error("Failed to process URL #%s %s: %s", index, url, exc)
            return ResolvedUrl(
                original=url,
                resolved=url,
                was_shortened=needs_resolution(url),
                method=ResolutionMethod.UNRESOLVED,
                error=str(exc),
            )

    async def resolve(self, url: str) -> ResolvedUrl:
        if not needs_resolution(url):
            return ResolvedUrl(original=url, resolved=url, was_shortened=False)

        for name, strategy in self._strategies:
            try:
                candidate = await strategy(url)
            except Exception as exc:
                logger.debug("Strategy %s failed for %s: %s", name, url, exc)
                continue
            if candidate is None:
                logger.debug("Strategy %s found nothing for %s", name, url)
                continue
            method, resolved = candidate
            logger.info("Resolved %s -> %s via %s", url, resolved, method.value)
            return ResolvedUrl(original=url, resolved=resolved, was_shortened=True, method=method)

        logger.warning("Could not resolve shortened URL %s, keeping original", url)
        return ResolvedUrl(
            original=url,
            resolved=url,
            was_shortened=True,
            method=ResolutionMethod.UNRESOLVED,
            note=UNRESOLVED_NOTE,
        )

    async def _via_unshorten_service(self, url: str) -> Candidate | None:
        response = await self._client.get(
            self._settings.unshorten_endpoint,
            params={"url": url},
            headers={"Accept": "application/json"},
            timeout=self._settings.timeout_seconds,
        )
        if not response.is_success:
            raise ResolutionError(f"unshorten service returned {response.status_code}", url)
        payload = response.json()
        candidate = payload.get("url") if isinstance(payload, dict) else None
        if is_acceptable(candidate, url):
            return ResolutionMethod.UNSHORTEN_SERVICE, candidate
        return None

    async def _via_head(self, url: str) -> Candidate | None:
        response = await self._client.head(
            url,
            headers={"User-Agent": self._settings.user_agent},
            follow_redirects=False,
            timeout=self._settings.timeout_seconds,
        )
        candidate = self._location(response, url)
        if is_acceptable(candidate, url):
            return ResolutionMethod.HEAD_REDIRECT, candidate
        return None

    async def _via_get(self, url: str) -> Candidate | None:
        response = await self._client.get(
            url,
            headers={
                "User-Agent": self._settings.browser_user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
            follow_redirects=False,
            timeout=self._settings.timeout_seconds,
        )
        if response.is_redirect:
            candidate = self._location(response, url)
            if is_acceptable(candidate, url):
                return ResolutionMethod.HTTP_REDIRECT, candidate
            return None
        if response.status_code == 200:
            candidate = extract_url_from_html(response.text)
            if is_acceptable(candidate, url):
                return ResolutionMethod.HTML_SCAN, candidate
        return None

    @staticmethod
    def _location(response: httpx.Response, url: str) -> str | None:
        location = response.headers.get("location")
        if not location:
            return None
        return urljoin(url, location.strip())
