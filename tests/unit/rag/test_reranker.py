"""Tests for the reranker client and its keep-warm pinger."""

from __future__ import annotations

import http.client
import json
import threading
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from quarry.errors import RerankerError
from quarry.rag.hybrid import SearchCandidate
from quarry.rag.reranker import SECRET_HEADER, KeepWarm, RerankerClient

URLOPEN = "quarry.rag.reranker.urllib.request.urlopen"


def _reply(body) -> MagicMock:
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    mock = MagicMock()
    mock.return_value.__enter__.return_value.read.return_value = raw
    return mock


def _candidates(*ids: str) -> list[SearchCandidate]:
    return [SearchCandidate(id=i, content=f"content {i}", hybrid_score=0.5) for i in ids]


class TestRerank:
    def test_reorders_by_score_and_sends_wire_format(self):
        client = RerankerClient("http://reranker:8080/", secret="s3cret", timeout=2.5)
        reply = {"rerankedDocuments": [{"id": "a", "rerank_score": 0.1}, {"id": "b", "rerank_score": 0.9}]}
        with patch(URLOPEN, _reply(reply)) as mock_open:
            results = client.rerank("what is the refund window", _candidates("a", "b"))

        assert [c.id for c in results] == ["b", "a"]
        assert results[0].rerank_score == pytest.approx(0.9)
        request = mock_open.call_args.args[0]
        assert request.full_url == "http://reranker:8080/api/rerank"
        assert request.get_method() == "POST"
        assert request.get_header(SECRET_HEADER.capitalize()) == "s3cret"
        assert mock_open.call_args.kwargs["timeout"] == 2.5
        sent = json.loads(request.data)
        assert sent == {
            "query": "what is the refund window",
            "documents": [{"id": "a", "content": "content a"}, {"id": "b", "content": "content b"}],
        }

    def test_unscored_candidates_follow_in_original_order(self):
        client = RerankerClient("http://reranker")
        reply = {"rerankedDocuments": [{"id": "c", "rerank_score": 2.0}, {"id": "zzz", "rerank_score": 9.0}]}
        with patch(URLOPEN, _reply(reply)):
            results = client.rerank("q", _candidates("a", "b", "c"))
        assert [c.id for c in results] == ["c", "a", "b"]
        assert results[1].rerank_score is None

    def test_input_list_not_modified(self):
        client = RerankerClient("http://reranker")
        cands = _candidates("a", "b")
        reply = {"rerankedDocuments": [{"id": "b", "rerank_score": 1.0}, {"id": "a", "rerank_score": 0.0}]}
        with patch(URLOPEN, _reply(reply)):
            client.rerank("q", cands)
        assert [c.id for c in cands] == ["a", "b"]
        assert all(c.rerank_score is None for c in cands)

    def test_no_secret_header_when_unset(self):
        client = RerankerClient("http://reranker")
        reply = {"rerankedDocuments": [{"id": "a", "rerank_score": 1.0}]}
        with patch(URLOPEN, _reply(reply)) as mock_open:
            client.rerank("q", _candidates("a"))
        assert not mock_open.call_args.args[0].has_header(SECRET_HEADER.capitalize())

    def test_empty_candidates_skip_request(self):
        with patch(URLOPEN) as mock_open:
            assert RerankerClient("http://reranker").rerank("q", []) == []
        mock_open.assert_not_called()

    @pytest.mark.parametrize(
        "body",
        [
            {"rerankedDocuments": []},
            {"rerankedDocuments": [{"id": "a"}, {"id": "b", "rerank_score": "high"}]},
            {"results": []},
            [1, 2, 3],
            b"not json",
        ],
    )
    def test_unusable_reply_raises(self, body):
        with patch(URLOPEN, _reply(body)), pytest.raises(RerankerError):
            RerankerClient("http://reranker").rerank("q", _candidates("a", "b"))

    def test_http_error_raises(self):
        err = urllib.error.HTTPError("http://reranker/api/rerank", 403, "Forbidden", {}, None)
        with patch(URLOPEN, side_effect=err), pytest.raises(RerankerError, match="HTTP 403"):
            RerankerClient("http://reranker").rerank("q", _candidates("a"))

    @pytest.mark.parametrize(
        "exc",
        [
            urllib.error.URLError("connection refused"),
            TimeoutError("timed out"),
            http.client.IncompleteRead(b"{"),
        ],
    )
    def test_network_error_raises(self, exc):
        with patch(URLOPEN, side_effect=exc), pytest.raises(RerankerError, match="unreachable"):
            RerankerClient("http://reranker").rerank("q", _candidates("a"))

    def test_url_without_scheme_raises(self):
        with pytest.raises(RerankerError, match="Invalid reranker URL"):
            RerankerClient("/reranker").rerank("q", _candidates("a"))


class TestPing:
    def test_ok(self):
        with patch(URLOPEN, _reply({"status": "ok"})) as mock_open:
            assert RerankerClient("http://reranker").ping() is True
        request = mock_open.call_args.args[0]
        assert request.full_url == "http://reranker/api/health"
        assert request.get_method() == "GET"

    def test_failure_returns_false(self):
        with patch(URLOPEN, side_effect=urllib.error.URLError("down")):
            assert RerankerClient("http://reranker").ping() is False


class TestKeepWarm:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            KeepWarm(MagicMock(), interval=0)

    def test_pings_until_stopped(self):
        pinged = threading.Event()
        client = MagicMock()
        client.ping.side_effect = lambda: pinged.set() or True

        warmer = KeepWarm(client, interval=60)
        warmer.start()
        try:
            assert pinged.wait(2.0)
            assert warmer.running
        finally:
            warmer.stop(timeout=2.0)
        assert not warmer.running
        assert client.ping.call_count == 1

    def test_start_is_idempotent(self):
        client = MagicMock()
        client.ping.return_value = True
        warmer = KeepWarm(client, interval=60)
        warmer.start()
        first = warmer._thread
        warmer.start()
        try:
            assert warmer._thread is first
        finally:
            warmer.stop(timeout=2.0)

    def test_keeps_pinging_after_failures(self):
        calls = []
        done = threading.Event()

        def ping():
            calls.append(1)
            if len(calls) >= 3:
                done.set()
            return False

        client = MagicMock()
        client.ping.side_effect = ping
        warmer = KeepWarm(client, interval=0.01)
        warmer.start()
        try:
            assert done.wait(2.0)
        finally:
            warmer.stop(timeout=2.0)
