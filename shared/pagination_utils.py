"""
Cursor-based pagination utilities for the messaging API
Provides standardized pagination with page limits, pacing and monitoring
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import TransportError
from .models import Page, Recipient

logger = logging.getLogger(__name__)


@dataclass
class PaginationStats:
    """Statistics for pagination performance monitoring"""
    total_pages: int = 0
    total_items: int = 0
    duplicates_dropped: int = 0
    duration_seconds: float = 0.0
    stop_reason: str = ''

    @property
    def avg_items_per_page(self) -> float:
        return self.total_items / self.total_pages if self.total_pages else 0.0


def normalize_cursor(raw: Any, base_url: str) -> Optional[str]:
    """Normalize the platform's `pages.next` value to an absolute URL or None.

    Accepted shapes: absent, absolute URL, root-relative path, or an object
    carrying a `url` field in either of the two string forms.
    """
    base = base_url.rstrip('/')
    if not raw:
        return None
    if isinstance(raw, str):
        if raw.startswith('http'):
            return raw
        if raw.startswith('/'):
            return f"{base}{raw}"
        logger.debug(f"Ignoring unrecognised cursor string: {raw!r}")
        return None
    if isinstance(raw, dict):
        url = raw.get('url')
        if not url or not isinstance(url, str):
            return None
        if url.startswith('http'):
            return url
        return f"{base}/{url.lstrip('/')}"
    logger.debug(f"Ignoring unrecognised cursor type: {type(raw).__name__}")
    return None


class RequestPacer:
    """Fixed delay between consecutive requests of one listing."""

    def __init__(self, delay_seconds: float):
        self.delay_seconds = max(0.0, delay_seconds)

    def wait(self):
        if self.delay_seconds > 0:
            logger.debug(f"⏸️ Rate limit pause: {self.delay_seconds:.2f}s")
            time.sleep(self.delay_seconds)


# fetch_page(url, method, body) -> Page
PageFetcher = Callable[[str, str, Optional[Dict[str, Any]]], Page]


class CursorPaginator:
    """
    Sequential cursor walker for the messaging API
    Features:
    - page limit (0 = unlimited)
    - empty page ends the stream even if a cursor is present
    - a cursor is never fetched twice; a repeated one aborts the listing
    - duplicate recipient ids are dropped
    - progress logging for large audiences
    """

    def __init__(self, fetch_page: PageFetcher, pacer: RequestPacer, max_pages: int = 0,
                 verbose: bool = False, progress_interval: int = 20):
        self.fetch_page = fetch_page
        self.pacer = pacer
        self.max_pages = max(0, int(max_pages or 0))
        self.verbose = verbose
        self.progress_interval = progress_interval

    def fetch_all(self, first_url: str, first_method: str = 'GET',
                  first_body: Optional[Dict[str, Any]] = None,
                  label: str = 'recipients') -> Tuple[List[Recipient], PaginationStats]:
        """
        Walk every page starting from the first request.

        Later pages always follow the normalized cursor with GET. Any error
        raised by `fetch_page` propagates; no partial result is returned.

        Returns:
            Tuple of (recipients, pagination_stats)
        """
        start_time = time.time()
        stats = PaginationStats()
        recipients: List[Recipient] = []
        seen_ids = set()
        fetched_urls = set()

        url, method, body = first_url, first_method, first_body
        log = logger.info if self.verbose else logger.debug

        while True:
            if self.max_pages and stats.total_pages >= self.max_pages:
                stats.stop_reason = 'max_pages'
                logger.info(f"🧪 Page limit reached: {stats.total_pages} pages of {label}")
                break

            if stats.total_pages > 0:
                self.pacer.wait()

            log(f"Fetching {label} page {stats.total_pages + 1}: {method} {url}")
            fetched_urls.add(url)
            page = self.fetch_page(url, method, body)
            stats.total_pages += 1

            if page.raw_count == 0:
                stats.stop_reason = 'empty_page'
                log(f"🔚 Page {stats.total_pages} of {label} was empty, ending pagination")
                break

            for recipient in page.items:
                if recipient.id in seen_ids:
                    stats.duplicates_dropped += 1
                    continue
                seen_ids.add(recipient.id)
                recipients.append(recipient)

            log(f"  Page {stats.total_pages}: {len(page.items)} {label} kept of {page.raw_count}. "
                f"Total so far: {len(recipients)}")

            if self.progress_interval > 0 and stats.total_pages % self.progress_interval == 0:
                elapsed = time.time() - start_time
                rate = len(recipients) / elapsed if elapsed > 0 else 0
                logger.info(f"📄 Progress: {stats.total_pages} pages, {len(recipients)} {label} ({rate:.1f}/sec)")

            if not page.next_cursor:
                stats.stop_reason = 'no_cursor'
                break

            if page.next_cursor in fetched_urls:
                stats.stop_reason = 'repeated_cursor'
                logger.error(f"❌ Cursor repeated after page {stats.total_pages} of {label}: {page.next_cursor}. "
                             f"Possible pagination corruption, aborting the listing.")
                raise TransportError(None, f"Cursor repeated after page {stats.total_pages}", page.next_cursor)

            url, method, body = page.next_cursor, 'GET', None

        stats.total_items = len(recipients)
        stats.duration_seconds = time.time() - start_time
        if stats.duplicates_dropped:
            logger.warning(f"⚠️ Dropped {stats.duplicates_dropped} duplicate {label} across pages")
        logger.info(f"📊 Pagination complete: {stats.total_items} {label} in {stats.total_pages} pages "
                    f"({stats.duration_seconds:.1f}s, stop={stats.stop_reason})")
        return recipients, stats
