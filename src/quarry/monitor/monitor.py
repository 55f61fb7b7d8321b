"""URL source monitor: accessibility checks and content-change detection.

Each check fetches the page, extracts its readable text and compares the
SHA-256 of that text with the stored hash:

  identical           → OK
  different / unknown → CONTENT_CHANGED, new hash stored, source flipped
                        to pending_reingest
  non-2xx response    → ERROR_<status>
  network failure     → ERROR_CONNECTION
  empty body          → ERROR_EMPTY_CONTENT
  no readable text    → ERROR_NO_TEXT_EXTRACTED
  private address     → ERROR_BLOCKED
  bad URL             → ERROR_INVALID_URL
  unsupported type    → ERROR_UNSUPPORTED_CONTENT
  anything else       → ERROR_INTERNAL

Error outcomes never touch the hash or the main status. Every check
stamps ``last_checked_at`` and ``last_check_status``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from quarry.db.models import KnowledgeSource, SourceKind, SourceStatus
from quarry.db.repository import Repository
from quarry.errors import FetchError, SsrfError
from quarry.ingest.web import (
    UnsupportedContentError,
    WebFetcher,
    extract_page_text,
    text_fingerprint,
)

logger = logging.getLogger(__name__)

CHECK_OK = "OK"
CHECK_CONTENT_CHANGED = "CONTENT_CHANGED"
CHECK_CONNECTION = "ERROR_CONNECTION"
CHECK_EMPTY = "ERROR_EMPTY_CONTENT"
CHECK_NO_TEXT = "ERROR_NO_TEXT_EXTRACTED"
CHECK_BLOCKED = "ERROR_BLOCKED"
CHECK_INVALID_URL = "ERROR_INVALID_URL"
CHECK_UNSUPPORTED = "ERROR_UNSUPPORTED_CONTENT"
CHECK_INTERNAL = "ERROR_INTERNAL"


@dataclass
class CheckResult:
    source_id: str
    tenant_id: str
    status: str
    content_hash: str | None = None
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.status == CHECK_CONTENT_CHANGED

    @property
    def ok(self) -> bool:
        return not self.status.startswith("ERROR_")


class SourceMonitor:
    """Check URL sources for accessibility and content changes.

    Args:
        repo: Open Repository instance.
        fetcher: Web fetcher (User-Agent and timeout configured there).
        recheck_days: Default age after which a source is due for a check.
    """

    def __init__(self, repo: Repository, fetcher: WebFetcher | None = None, recheck_days: int = 7) -> None:
        self._repo = repo
        self._fetcher = fetcher or WebFetcher()
        self._recheck_days = recheck_days

    def check(self, source: KnowledgeSource) -> CheckResult:
        """Check one URL source and persist the outcome."""
        if source.kind is not SourceKind.URL:
            raise ValueError(f"Only url sources can be monitored, got '{source.kind.value}'.")

        try:
            result = self._probe(source)
        except Exception as exc:
            logger.exception("tenant=%s source=%s probe crashed", source.tenant_id, source.id)
            result = CheckResult(source.id, source.tenant_id, CHECK_INTERNAL, error=str(exc))
        new_status = SourceStatus.PENDING_REINGEST if result.changed else None
        self._repo.record_check(
            source.tenant_id,
            source.id,
            result.status,
            content_hash=result.content_hash,
            status=new_status,
        )
        log = logger.info if result.ok else logger.warning
        log(
            "tenant=%s source=%s check=%s%s",
            source.tenant_id,
            source.id,
            result.status,
            f" ({result.error})" if result.error else "",
        )
        return result

    def sweep(
        self,
        tenant_id: str | None = None,
        older_than_days: int | None = None,
        limit: int | None = None,
    ) -> list[CheckResult]:
        """Check every URL source that is due; one failure never stops the sweep."""
        days = self._recheck_days if older_than_days is None else older_than_days
        due = self._repo.list_sources_due_for_check(days, tenant_id=tenant_id, limit=limit)
        logger.info("monitor sweep: %d source(s) due", len(due))
        results: list[CheckResult] = []
        for source in due:
            try:
                results.append(self.check(source))
            except Exception as exc:
                logger.exception("tenant=%s source=%s check crashed", source.tenant_id, source.id)
                results.append(
                    CheckResult(source.id, source.tenant_id, CHECK_INTERNAL, error=str(exc))
                )
        return results

    # ------------------------------------------------------------------
    # Probe
    # ------------------------------------------------------------------

    def _probe(self, source: KnowledgeSource) -> CheckResult:
        def outcome(status: str, content_hash: str | None = None, error: str | None = None) -> CheckResult:
            return CheckResult(source.id, source.tenant_id, status, content_hash, error)

        url = source.location or source.name
        try:
            page = self._fetcher.fetch(url)
        except SsrfError as exc:
            return outcome(CHECK_BLOCKED, error=str(exc))
        except UnsupportedContentError as exc:
            return outcome(CHECK_UNSUPPORTED, error=str(exc))
        except FetchError as exc:
            status = f"ERROR_{exc.status}" if exc.status else CHECK_CONNECTION
            return outcome(status, error=str(exc))
        except ValueError as exc:
            return outcome(CHECK_INVALID_URL, error=str(exc))

        body = page.text
        if not body.strip():
            return outcome(CHECK_EMPTY)
        text = extract_page_text(body) if page.is_html else body.strip()
        if not text:
            return outcome(CHECK_NO_TEXT)

        new_hash = text_fingerprint(text)
        if new_hash == source.content_hash:
            return outcome(CHECK_OK, content_hash=new_hash)
        return outcome(CHECK_CONTENT_CHANGED, content_hash=new_hash)
