"""Web fetcher: URL retrieval with SSRF protection, plus page text extraction.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html, application/xhtml+xml and text/plain.
- Max response body: 5 MB.
- Max redirects: 3.
"""

from __future__ import annotations

import hashlib
import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPException, HTTPResponse

import html2text

from quarry.errors import FetchError, SsrfError
from quarry.ingest.html import strip_noise

DEFAULT_USER_AGENT = "QuarryBot/0.1 (+knowledge-source-monitor)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "application/xhtml+xml", "text/plain"}
_TEXT_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "pre", "article"]
_WS_RE = re.compile(r"\s+")

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class UnsupportedContentError(FetchError):
    """Raised when a response has a Content-Type we cannot index."""


@dataclass
class FetchedPage:
    url: str
    status: int
    content_type: str
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def is_html(self) -> bool:
        return self.content_type != "text/plain"


class WebFetcher:
    """Fetch a URL after scheme validation and an SSRF check.

    Args:
        user_agent: Descriptive User-Agent sent with every request.
        timeout: Connect + read timeout in seconds.
        max_bytes: Response body size cap.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 15.0,
        max_bytes: int = _MAX_BYTES,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_bytes = max_bytes

    def fetch(self, url: str) -> FetchedPage:
        """Validate and fetch *url*.

        Raises:
            ValueError: Unsupported scheme or missing hostname.
            SsrfError: The host resolves to a private/reserved address.
            FetchError: Non-2xx status (``status`` set) or network failure.
            UnsupportedContentError: Content-Type outside the whitelist.
        """
        self.validate_scheme(url)
        self.check_ssrf(url)
        return self._fetch(url)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise ValueError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )

    @staticmethod
    def check_ssrf(url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges.

        Raises SsrfError if any resolved address is private, loopback,
        link-local, or otherwise reserved.
        """
        hostname = urllib.parse.urlparse(url).hostname
        if not hostname:
            raise ValueError(f"URL has no hostname: {url}")

        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise FetchError(f"DNS resolution failed for '{hostname}': {exc}") from exc

        for addrinfo in addrinfos:
            try:
                ip = ipaddress.ip_address(addrinfo[4][0])
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise SsrfError(
                    f"URL resolves to private address ({ip}). "
                    "Access to internal network addresses is not allowed."
                )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def _fetch(self, url: str) -> FetchedPage:
        request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

        try:
            response: HTTPResponse = opener.open(request, timeout=self.timeout)
        except urllib.error.HTTPError as exc:
            raise FetchError(f"HTTP {exc.code} fetching '{url}'", status=exc.code) from exc
        except (urllib.error.URLError, OSError, HTTPException) as exc:
            raise FetchError(f"Failed to fetch URL '{url}': {exc}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise UnsupportedContentError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
                )
            try:
                body = response.read(self.max_bytes + 1)
            except (OSError, HTTPException) as exc:
                raise FetchError(f"Failed reading '{url}': {exc}") from exc

        if len(body) > self.max_bytes:
            raise FetchError(
                f"Response body exceeds {self.max_bytes // (1024 * 1024)} MB limit for URL '{url}'."
            )
        return FetchedPage(url=url, status=getattr(response, "status", 200), content_type=ct, body=body)


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        return super().redirect_request(req, fp, code, msg, headers, newurl)


# ------------------------------------------------------------------
# Text extraction
# ------------------------------------------------------------------


def extract_page_text(html: str) -> str:
    """Return the readable text of an HTML page, used for change detection.

    Block-level content elements are collected after noise removal; pages
    without any fall back to an html2text rendering of the whole document.
    """
    if not html or not html.strip():
        return ""
    soup = strip_noise(html)
    blocks: list[str] = []
    for el in soup.find_all(_TEXT_BLOCK_TAGS):
        if el.name == "article" and el.find(_TEXT_BLOCK_TAGS) is not None:
            continue
        text = _WS_RE.sub(" ", el.get_text(" ", strip=True)).strip()
        if text:
            blocks.append(text)
    if blocks:
        return "\n\n".join(blocks)
    return _WS_RE.sub(" ", _h2t.handle(str(soup))).strip()


def text_fingerprint(text: str) -> str:
    """SHA-256 hex digest of extracted page text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
