"""
Messaging platform API client.
Owns authentication, cursor pagination and single-message sends.
Pagination is strictly sequential; one instance per run.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ConfigError, SendError, TransportError
from .models import Page, Recipient, SearchFilter, Segment
from .pagination_utils import CursorPaginator, RequestPacer, normalize_cursor

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://api.intercom.io'
DEFAULT_PAGE_SIZE = 150
DEFAULT_REQUEST_DELAY = 0.05


def build_session(max_retries: int = 3) -> requests.Session:
    """Session whose adapter retries idempotent GETs on 429/5xx only."""
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class MessagingClient:
    """Client for the contacts, segments and messages endpoints."""

    def __init__(self, auth_token: str, sender_id: str, page_size: int = DEFAULT_PAGE_SIZE,
                 max_pages: int = 0, inter_request_delay: float = DEFAULT_REQUEST_DELAY,
                 verbose_logging: bool = False, base_url: str = DEFAULT_BASE_URL,
                 timeout: float = 30, max_retries: int = 3,
                 session: Optional[requests.Session] = None):
        if not auth_token:
            raise ConfigError("Messaging API token is not configured (INTERCOM_TOKEN)")
        if not sender_id:
            raise ConfigError("Sender/admin id is not configured (INTERCOM_ADMIN_ID)")
        if page_size <= 0:
            raise ConfigError(f"page_size must be positive, got {page_size}")

        self._auth_token = auth_token
        self.sender_id = str(sender_id)
        self.page_size = page_size
        self.max_pages = max(0, max_pages)
        self.inter_request_delay = inter_request_delay
        self.verbose_logging = verbose_logging
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session if session is not None else build_session(max_retries)

        logger.debug(f"MessagingClient ready: base={self.base_url} token={auth_token[:5]}... "
                     f"sender={self.sender_id} page_size={page_size} max_pages={self.max_pages or 'unlimited'}")

    def _headers(self, with_body: bool = False) -> Dict[str, str]:
        headers = {
            'Authorization': f'Bearer {self._auth_token}',
            'Accept': 'application/json',
        }
        if with_body:
            headers['Content-Type'] = 'application/json'
        return headers

    def _request(self, method: str, url: str, body: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.session.request(
            method,
            url,
            headers=self._headers(with_body=body is not None),
            json=body,
            timeout=self.timeout,
        )

    def _call(self, method: str, url: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Listing/search/segment call. Anything but a 2xx JSON body raises TransportError."""
        try:
            response = self._request(method, url, body)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ {method} {url} failed: {type(e).__name__}: {e}")
            raise TransportError(None, str(e), url) from e

        if not 200 <= response.status_code < 300:
            text = response.text or ''
            logger.error(f"❌ {method} {url} returned {response.status_code}: {text[:800]}")
            raise TransportError(response.status_code, text, url)

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(response.status_code, f"Invalid JSON body: {e}", url) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error(f"❌ {method} {url} returned a {type(data).__name__} body, expected an object")
            raise TransportError(response.status_code, "Unexpected response body", url)
        return data

    def _fetch_page(self, url: str, method: str, body: Optional[Dict[str, Any]]) -> Page:
        data = self._call(method, url, body)
        contacts = data.get('data') or []
        if not isinstance(contacts, list):
            raise TransportError(200, "Unexpected response body: 'data' is not a list", url)
        users = [
            Recipient.from_contact(c) for c in contacts
            if isinstance(c, dict) and c.get('role') == 'user' and c.get('id')
        ]
        pages = data.get('pages')
        raw_next = pages.get('next') if isinstance(pages, dict) else None
        return Page(items=users, next_cursor=normalize_cursor(raw_next, self.base_url), raw_count=len(contacts))

    def _paginator(self) -> CursorPaginator:
        return CursorPaginator(
            fetch_page=self._fetch_page,
            pacer=RequestPacer(self.inter_request_delay),
            max_pages=self.max_pages,
            verbose=self.verbose_logging,
        )

    def list_all_recipients(self) -> List[Recipient]:
        """Every contact with role `user`, following cursors until exhausted or the page limit is hit."""
        logger.info("👥 Fetching all users from contacts API...")
        first_url = f"{self.base_url}/contacts?per_page={self.page_size}"
        recipients, _ = self._paginator().fetch_all(first_url, 'GET', None, label='users')
        return recipients

    def search_recipients(self, search_filter: SearchFilter) -> List[Recipient]:
        """Contacts matching one filter. First page is a POST search, later pages GET the cursor."""
        logger.info(f"🔍 Searching contacts where {search_filter.field} {search_filter.operator} {search_filter.value}")
        body = {
            'query': search_filter.to_query(),
            'pagination': {'per_page': self.page_size},
        }
        recipients, _ = self._paginator().fetch_all(f"{self.base_url}/contacts/search", 'POST', body,
                                                    label='matching users')
        return recipients

    def list_segments(self) -> List[Segment]:
        url = f"{self.base_url}/segments"
        data = self._call('GET', url)
        raw_segments = data.get('segments') or []
        if not isinstance(raw_segments, list):
            raise TransportError(200, "Unexpected response body: 'segments' is not a list", url)
        segments = [
            Segment(id=str(s['id']), name=str(s.get('name') or ''))
            for s in raw_segments
            if isinstance(s, dict) and s.get('id') is not None
        ]
        logger.debug(f"Found {len(segments)} segments")
        return segments

    def send_to_one(self, recipient_id: str, html_body: str) -> Dict[str, Any]:
        """
        Post one in-app message. Never retried.

        Raises:
            SendError: on any non-2xx response or network failure
        """
        payload = {
            'message_type': 'inapp',
            'body': html_body,
            'from': {'type': 'admin', 'id': self.sender_id},
            'to': {'type': 'user', 'id': recipient_id},
        }
        try:
            response = self._request('POST', f"{self.base_url}/messages", payload)
        except requests.exceptions.RequestException as e:
            raise SendError(recipient_id, None, f"{type(e).__name__}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise SendError(recipient_id, response.status_code, response.text or '')

        if self.verbose_logging:
            logger.info(f"✅ Message sent to {recipient_id}")
        try:
            return response.json() if response.content else {}
        except ValueError:
            return {}
