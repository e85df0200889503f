import pytest
import requests

BASE = "https://api.test"


class _FakeResponse:
    def __init__(self, status_code=200, text="", json_data=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text else ("" if json_data is None else str(json_data))
        self.content = self.text.encode()

    def json(self):
        if self._json is None:
            raise ValueError("No JSON")
        return self._json


class _FakeSession:
    """Routes requests through a handler and records (method, url, json)."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append((method, url, json))
        self.last_headers = headers
        return self.handler(method, url, json)


def _cursor(shape, page_index):
    path = f"/contacts?starting_after=p{page_index}"
    return {
        "absolute": BASE + path,
        "relative": path,
        "object_absolute": {"url": BASE + path},
        "object_relative": {"url": path},
    }[shape]


def _paged_contacts(total, page_size, shape, roles=None):
    """Handler serving `total` user contacts over pages of `page_size`."""
    pages = [list(range(i, min(i + page_size, total))) for i in range(0, total, page_size)] or [[]]

    def handler(method, url, body):
        if "starting_after=p" in url:
            index = int(url.rsplit("p", 1)[1])
        else:
            index = 0
        contacts = [
            {"type": "contact", "id": f"u{n}", "role": (roles or {}).get(n, "user"), "email": f"u{n}@x.io"}
            for n in pages[index]
        ]
        data = {"type": "list", "data": contacts, "pages": {}}
        if index + 1 < len(pages):
            data["pages"]["next"] = _cursor(shape, index + 1)
        return _FakeResponse(json_data=data)

    return handler


def _client(session, **kwargs):
    from shared.api_client import MessagingClient

    kwargs.setdefault("page_size", 10)
    kwargs.setdefault("inter_request_delay", 0)
    return MessagingClient("tok_secret", "admin-1", base_url=BASE, session=session, **kwargs)


@pytest.mark.parametrize("shape", ["absolute", "relative", "object_absolute", "object_relative"])
def test_list_all_recipients_every_cursor_shape(shape):
    session = _FakeSession(_paged_contacts(95, 10, shape))
    users = _client(session).list_all_recipients()

    ids = [u.id for u in users]
    assert len(ids) == 95
    assert len(set(ids)) == 95
    assert ids == [f"u{n}" for n in range(95)]
    assert len(session.calls) == 10
    assert session.calls[0] == ("GET", f"{BASE}/contacts?per_page=10", None)


def test_max_pages_fetches_exactly_k_pages():
    session = _FakeSession(_paged_contacts(95, 10, "relative"))
    users = _client(session, max_pages=3).list_all_recipients()

    assert len(session.calls) == 3
    assert len(users) == 30


def test_max_pages_zero_fetches_until_cursor_absent():
    session = _FakeSession(_paged_contacts(40, 10, "absolute"))
    users = _client(session, max_pages=0).list_all_recipients()

    assert len(session.calls) == 4
    assert len(users) == 40


def test_empty_page_with_cursor_ends_pagination():
    def handler(method, url, body):
        return _FakeResponse(json_data={"data": [], "pages": {"next": "/contacts?starting_after=p1"}})

    session = _FakeSession(handler)
    assert _client(session).list_all_recipients() == []
    assert len(session.calls) == 1


def test_only_user_role_contacts_are_kept():
    session = _FakeSession(_paged_contacts(5, 10, "absolute", roles={1: "lead", 3: "lead"}))
    users = _client(session).list_all_recipients()

    assert [u.id for u in users] == ["u0", "u2", "u4"]


def test_listing_error_raises_transport_error_without_partial_result():
    def handler(method, url, body):
        if "starting_after" in url:
            return _FakeResponse(status_code=500, text="boom")
        return _FakeResponse(json_data={"data": [{"id": "u0", "role": "user"}],
                                        "pages": {"next": "/contacts?starting_after=p1"}})

    from shared.errors import TransportError

    with pytest.raises(TransportError) as excinfo:
        _client(_FakeSession(handler)).list_all_recipients()
    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "boom"


def test_network_failure_becomes_transport_error():
    def handler(method, url, body):
        raise requests.exceptions.ConnectionError("unreachable")

    from shared.errors import TransportError

    with pytest.raises(TransportError) as excinfo:
        _client(_FakeSession(handler)).list_segments()
    assert excinfo.value.status_code is None


def test_search_posts_first_page_then_gets_cursor():
    from shared.models import SearchFilter

    def handler(method, url, body):
        if method == "POST":
            return _FakeResponse(json_data={"data": [{"id": "a", "role": "user"}],
                                            "pages": {"next": {"url": "/contacts/search?starting_after=x"}}})
        return _FakeResponse(json_data={"data": [{"id": "b", "role": "user"}], "pages": {}})

    session = _FakeSession(handler)
    users = _client(session, page_size=150).search_recipients(SearchFilter("last_seen_at", ">", 1700000000))

    assert [u.id for u in users] == ["a", "b"]
    method, url, body = session.calls[0]
    assert (method, url) == ("POST", f"{BASE}/contacts/search")
    assert body == {
        "query": {"field": "last_seen_at", "operator": ">", "value": 1700000000},
        "pagination": {"per_page": 150},
    }
    assert session.calls[1] == ("GET", f"{BASE}/contacts/search?starting_after=x", None)


def test_list_segments_parses_segments():
    def handler(method, url, body):
        assert url == f"{BASE}/segments"
        return _FakeResponse(json_data={"segments": [{"id": "s1", "name": "Active"}, {"id": "s2", "name": "New"}]})

    segments = _client(_FakeSession(handler)).list_segments()
    assert [(s.id, s.name) for s in segments] == [("s1", "Active"), ("s2", "New")]


def test_list_segments_non_object_body_raises_transport_error():
    from shared.errors import TransportError

    session = _FakeSession(lambda m, u, b: _FakeResponse(json_data=[{"id": "s1", "name": "active"}]))

    with pytest.raises(TransportError) as exc_info:
        _client(session).list_segments()
    assert exc_info.value.status_code == 200


def test_list_segments_skips_malformed_entries():
    session = _FakeSession(lambda m, u, b: _FakeResponse(
        json_data={"segments": ["active", None, {"name": "no id"}, {"id": 7, "name": "Active"}]}))

    segments = _client(session).list_segments()
    assert [(s.id, s.name) for s in segments] == [("7", "Active")]


def test_resolver_falls_back_to_recency_when_segments_body_is_a_list():
    from audience.service import AudienceResolver

    def handler(method, url, body):
        if url.endswith("/segments"):
            return _FakeResponse(json_data=[{"id": "s1", "name": "active"}])
        return _FakeResponse(json_data={"data": [{"id": "u1", "role": "user"}], "pages": {}})

    session = _FakeSession(handler)
    resolved = AudienceResolver(_client(session), clock=lambda: 1_750_000_000).resolve(30)

    assert resolved.strategy == "recency"
    assert [r.id for r in resolved.recipients] == ["u1"]
    assert session.calls[-1][2]["query"]["field"] == "last_seen_at"


def test_listing_skips_non_object_contacts_and_bad_timestamps():
    session = _FakeSession(lambda m, u, b: _FakeResponse(json_data={
        "data": ["junk", {"id": "u1", "role": "user", "last_seen_at": 1750000000000}],
        "pages": "garbage",
    }))

    recipients = _client(session).list_all_recipients()

    assert [r.id for r in recipients] == ["u1"]
    assert recipients[0].last_active_at is None
    assert len(session.calls) == 1


def test_listing_non_list_data_raises_transport_error():
    from shared.errors import TransportError

    session = _FakeSession(lambda m, u, b: _FakeResponse(json_data={"data": {"id": "u1"}}))

    with pytest.raises(TransportError):
        _client(session).list_all_recipients()


def test_send_to_one_posts_inapp_message():
    session = _FakeSession(lambda m, u, b: _FakeResponse(json_data={"id": "msg1"}))
    _client(session).send_to_one("u42", "<p>hi</p>")

    method, url, body = session.calls[0]
    assert (method, url) == ("POST", f"{BASE}/messages")
    assert body == {
        "message_type": "inapp",
        "body": "<p>hi</p>",
        "from": {"type": "admin", "id": "admin-1"},
        "to": {"type": "user", "id": "u42"},
    }
    assert session.last_headers["Authorization"] == "Bearer tok_secret"


def test_send_to_one_non_2xx_raises_send_error_once():
    from shared.errors import SendError

    session = _FakeSession(lambda m, u, b: _FakeResponse(status_code=429, text="slow down"))
    with pytest.raises(SendError) as excinfo:
        _client(session).send_to_one("u1", "body")

    assert excinfo.value.recipient_id == "u1"
    assert excinfo.value.status_code == 429
    assert len(session.calls) == 1


@pytest.mark.parametrize("token,sender", [("", "admin"), ("tok", ""), (None, "admin")])
def test_missing_credentials_raise_config_error(token, sender):
    from shared.api_client import MessagingClient
    from shared.errors import ConfigError

    with pytest.raises(ConfigError):
        MessagingClient(token, sender, session=_FakeSession(None))


def test_default_session_retries_get_only():
    from shared.api_client import build_session

    retries = build_session(max_retries=2).get_adapter("https://api.intercom.io").max_retries
    assert retries.total == 2
    assert "GET" in retries.allowed_methods
    assert "POST" not in retries.allowed_methods
    assert 429 in retries.status_forcelist
