"""Tests for WebFetcher (SSRF guard, scheme validation, fetch) and page text extraction."""

from __future__ import annotations

import http.client
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from quarry.errors import FetchError, SsrfError
from quarry.ingest.web import (
    UnsupportedContentError,
    WebFetcher,
    extract_page_text,
    text_fingerprint,
)


# ------------------------------------------------------------------
# Scheme validation
# ------------------------------------------------------------------


@pytest.mark.parametrize("url", ["https://example.com/page", "http://example.com/page"])
def test_scheme_ok(url):
    WebFetcher.validate_scheme(url)  # no exception


@pytest.mark.parametrize("url", ["ftp://example.com", "file:///etc/passwd", "example.com"])
def test_scheme_rejected(url):
    with pytest.raises(ValueError, match="scheme"):
        WebFetcher.validate_scheme(url)


def test_check_ssrf_no_hostname_raises():
    with pytest.raises(ValueError, match="hostname"):
        WebFetcher.check_ssrf("https://")


# ------------------------------------------------------------------
# SSRF guard
# ------------------------------------------------------------------


def _patch_getaddrinfo(ip: str):
    """Make getaddrinfo resolve to *ip*."""
    addr_info = [(None, None, None, None, (ip, 0))]
    return patch("quarry.ingest.web.socket.getaddrinfo", return_value=addr_info)


def test_ssrf_public_ip_ok():
    with _patch_getaddrinfo("93.184.216.34"):
        WebFetcher.check_ssrf("https://example.com")  # no exception


@pytest.mark.parametrize(
    "ip", ["127.0.0.1", "192.168.1.1", "169.254.169.254", "10.0.0.1", "172.16.0.1", "::1"]
)
def test_ssrf_private_blocked(ip):
    with _patch_getaddrinfo(ip):
        with pytest.raises(SsrfError, match="private address"):
            WebFetcher.check_ssrf("http://internal.example/")


def test_ssrf_error_is_also_value_error():
    assert issubclass(SsrfError, ValueError)
    assert issubclass(SsrfError, FetchError)


def test_dns_failure_is_fetch_error():
    import socket

    with patch("quarry.ingest.web.socket.getaddrinfo", side_effect=socket.gaierror("nope")):
        with pytest.raises(FetchError, match="DNS"):
            WebFetcher.check_ssrf("https://no-such-host.example")


# ------------------------------------------------------------------
# fetch()
# ------------------------------------------------------------------


def _response(body: bytes, content_type: str = "text/html; charset=utf-8", status: int = 200):
    resp = MagicMock()
    resp.headers = {"Content-Type": content_type}
    resp.read.return_value = body
    resp.status = status
    resp.__enter__.return_value = resp
    return resp


def _patch_opener(response=None, error=None):
    opener = MagicMock()
    if error is not None:
        opener.open.side_effect = error
    else:
        opener.open.return_value = response
    return patch("quarry.ingest.web.urllib.request.build_opener", return_value=opener), opener


def test_fetch_html_sends_user_agent():
    p_open, opener = _patch_opener(_response(b"<p>Hello</p>"))
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        page = WebFetcher(user_agent="TestBot/1.0", timeout=5).fetch("https://example.com/")

    assert page.is_html
    assert page.text == "<p>Hello</p>"
    assert page.content_type == "text/html"
    request = opener.open.call_args.args[0]
    assert request.get_header("User-agent") == "TestBot/1.0"
    assert opener.open.call_args.kwargs["timeout"] == 5


def test_fetch_plain_text():
    p_open, _ = _patch_opener(_response(b"just text", "text/plain"))
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        page = WebFetcher().fetch("https://example.com/robots.txt")
    assert not page.is_html
    assert page.text == "just text"


def test_fetch_unsupported_content_type():
    p_open, _ = _patch_opener(_response(b"%PDF", "application/pdf"))
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        with pytest.raises(UnsupportedContentError, match="application/pdf"):
            WebFetcher().fetch("https://example.com/doc.pdf")


def test_fetch_http_error_carries_status():
    err = urllib.error.HTTPError("https://example.com/", 404, "Not Found", {}, None)
    p_open, _ = _patch_opener(error=err)
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        with pytest.raises(FetchError) as exc_info:
            WebFetcher().fetch("https://example.com/")
    assert exc_info.value.status == 404


def test_fetch_network_error_has_no_status():
    p_open, _ = _patch_opener(error=urllib.error.URLError("connection refused"))
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        with pytest.raises(FetchError) as exc_info:
            WebFetcher().fetch("https://example.com/")
    assert exc_info.value.status is None


def test_fetch_truncated_body_is_fetch_error():
    resp = _response(b"")
    resp.read.side_effect = http.client.IncompleteRead(b"<p>Hel")
    p_open, _ = _patch_opener(resp)
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        with pytest.raises(FetchError, match="Failed reading"):
            WebFetcher().fetch("https://example.com/")


def test_fetch_body_too_large():
    p_open, _ = _patch_opener(_response(b"x" * 11))
    with _patch_getaddrinfo("93.184.216.34"), p_open:
        with pytest.raises(FetchError, match="exceeds"):
            WebFetcher(max_bytes=10).fetch("https://example.com/")


def test_fetch_blocks_before_connecting():
    p_open, opener = _patch_opener(_response(b"secret"))
    with _patch_getaddrinfo("10.0.0.5"), p_open:
        with pytest.raises(SsrfError):
            WebFetcher().fetch("http://intranet.example/")
    opener.open.assert_not_called()


# ------------------------------------------------------------------
# Text extraction and fingerprint
# ------------------------------------------------------------------


def test_extract_page_text_blocks_without_noise():
    html = (
        "<html><body><nav><p>Menu</p></nav><script>alert('x')</script>"
        "<h1>Title</h1><p>First   paragraph.</p><ul><li>Item</li></ul></body></html>"
    )
    assert extract_page_text(html) == "Title\n\nFirst paragraph.\n\nItem"


def test_extract_page_text_falls_back_to_html2text():
    text = extract_page_text("<html><body><div>Only a div here</div></body></html>")
    assert text == "Only a div here"


def test_extract_page_text_empty():
    assert extract_page_text("") == ""


def test_fingerprint_stable_and_sensitive():
    a = text_fingerprint("hello")
    assert a == text_fingerprint("hello")
    assert a != text_fingerprint("hello!")
    assert len(a) == 64
