from __future__ import annotations

import html
import re
import socket
from ipaddress import ip_address
from typing import Callable, List, Optional
from urllib.parse import urlparse

import httpx

from littleagent.logging import get_logger

logger = get_logger(__name__)

_SCRIPT_STYLE = re.compile(r"<(script|style|noscript)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def html_to_text(markup: str) -> str:
    """Drop scripts, styles and tags, unescape entities and collapse whitespace."""
    text = _SCRIPT_STYLE.sub(" ", markup)
    text = _TAG.sub(" ", text)
    text = html.unescape(text)
    return _WHITESPACE.sub(" ", text).strip()


def _is_public_address(value: str) -> bool:
    addr = ip_address(value.split("%", 1)[0])
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


def _is_ip_literal(host: str) -> bool:
    try:
        ip_address(host)
    except ValueError:
        return False
    return True


def resolve_host(hostname: str) -> List[str]:
    """Every address ``hostname`` resolves to."""
    infos = socket.getaddrinfo(hostname, None)
    return [sockaddr[0] for _, _, _, _, sockaddr in infos]


def _normalize_url(url: str) -> Optional[str]:
    candidate = url.strip()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return None
    return candidate


class WebsiteFetcher:
    """Best-effort brand website fetch used to enrich pitch context.

    ``fetch_text`` never raises: any failure (bad URL, timeout, HTTP error,
    non-HTML body) is logged and reported as ``None`` so the calling tool
    carries on without the extra context.

    The URL is model-supplied, so every hop is checked before it is
    requested: the host must resolve only to public addresses, and
    redirects are followed one at a time under the same check.
    """

    def __init__(
        self,
        *,
        timeout: float = 8.0,
        max_chars: int = 3000,
        max_redirects: int = 3,
        transport: Optional[httpx.BaseTransport] = None,
        resolver: Callable[[str], List[str]] = resolve_host,
    ) -> None:
        self.timeout = timeout
        self.max_chars = max_chars
        self.max_redirects = max_redirects
        self._transport = transport
        self._resolver = resolver

    def _host_allowed(self, url: str) -> bool:
        host = urlparse(url).hostname
        if not host:
            return False
        if _is_ip_literal(host):
            return _is_public_address(host)
        try:
            addresses = self._resolver(host)
        except OSError as exc:
            logger.debug("website_dns_lookup_failed", host=host, error_type=type(exc).__name__)
            return False
        return bool(addresses) and all(_is_public_address(a) for a in addresses)

    def _get(self, client: httpx.Client, target: str) -> Optional[httpx.Response]:
        url = target
        for _ in range(self.max_redirects + 1):
            if urlparse(url).scheme not in {"http", "https"} or not self._host_allowed(url):
                logger.debug("website_fetch_skipped", url=url, reason="blocked_host")
                return None
            response = client.get(url)
            if not response.is_redirect or response.next_request is None:
                return response
            url = str(response.next_request.url)
        logger.debug("website_fetch_skipped", url=target, reason="too_many_redirects")
        return None

    def fetch_text(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        target = _normalize_url(url)
        if target is None:
            logger.debug("website_fetch_skipped", reason="unsupported_url")
            return None
        timeout = httpx.Timeout(self.timeout, connect=min(self.timeout, 3.0))
        try:
            with httpx.Client(
                timeout=timeout,
                follow_redirects=False,
                transport=self._transport,
                headers={"User-Agent": "littleagent-pitch-context/1.0"},
            ) as client:
                response = self._get(client, target)
                if response is None:
                    return None
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("website_fetch_failed", url=target, error_type=type(exc).__name__)
            return None
        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and "text" not in content_type:
            logger.debug("website_fetch_skipped", url=target, reason="content_type")
            return None
        text = html_to_text(response.text)
        if not text:
            return None
        return text[: self.max_chars]
