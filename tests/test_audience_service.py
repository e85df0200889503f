import pytest

NOW = 1_750_000_000.0


class _FakeClient:
    """Messaging client double recording every call."""

    def __init__(self, segments=None, segments_error=None, search_results=None, search_errors=None):
        self.segments = segments or []
        self.segments_error = segments_error
        self.search_results = search_results or {}
        self.search_errors = search_errors or {}
        self.calls = []

    def list_segments(self):
        self.calls.append(("list_segments",))
        if self.segments_error:
            raise self.segments_error
        return self.segments

    def search_recipients(self, search_filter):
        self.calls.append(("search", search_filter.field, search_filter.operator, search_filter.value))
        if search_filter.field in self.search_errors:
            raise self.search_errors[search_filter.field]
        return self.search_results.get(search_filter.field, [])

    def list_all_recipients(self):
        self.calls.append(("list_all",))
        return []


def _users(*ids):
    from shared.models import Recipient

    return [Recipient(id=i) for i in ids]


def _resolver(client, **kwargs):
    from audience.service import AudienceResolver

    return AudienceResolver(client, clock=lambda: NOW, **kwargs)


@pytest.mark.parametrize("name", ["active", "Active", "ACTIVE"])
def test_active_segment_any_case_uses_segment_path_only(name):
    from shared.models import Segment

    client = _FakeClient(
        segments=[Segment("s0", "Newsletter"), Segment("s1", name)],
        search_results={"segment_id": _users("a", "b")},
    )
    resolved = _resolver(client).resolve(30)

    assert [r.id for r in resolved.recipients] == ["a", "b"]
    assert resolved.strategy == "segment"
    searches = [c for c in client.calls if c[0] == "search"]
    assert searches == [("search", "segment_id", "=", "s1")]


def test_no_matching_segment_falls_back_to_last_seen_search():
    from shared.models import Segment

    client = _FakeClient(segments=[Segment("s0", "Inactive")], search_results={"last_seen_at": _users("x")})
    resolved = _resolver(client).resolve(7)

    assert resolved.strategy == "recency"
    assert [r.id for r in resolved.recipients] == ["x"]
    assert ("search", "last_seen_at", ">", int(NOW) - 7 * 86400) in client.calls


def test_segment_search_failure_falls_back_to_last_seen_search():
    from shared.errors import TransportError
    from shared.models import Segment

    client = _FakeClient(
        segments=[Segment("s1", "active")],
        search_errors={"segment_id": TransportError(500, "boom")},
        search_results={"last_seen_at": _users("y")},
    )
    resolved = _resolver(client).resolve(30)

    assert resolved.strategy == "recency"
    assert [r.id for r in resolved.recipients] == ["y"]


def test_all_strategies_failing_raises_without_listing_everyone():
    from shared.errors import AudienceResolutionError, TransportError

    client = _FakeClient(
        segments_error=TransportError(403, "forbidden"),
        search_errors={"last_seen_at": TransportError(500, "boom")},
    )
    with pytest.raises(AudienceResolutionError) as excinfo:
        _resolver(client).resolve(30)

    assert len(excinfo.value.attempts) == 2
    assert ("list_all",) not in client.calls


def test_empty_recency_result_is_not_an_error():
    client = _FakeClient(search_results={"last_seen_at": []})
    resolved = _resolver(client).resolve(30)

    assert resolved.recipients == []
    assert resolved.strategy == "recency"


def test_segment_only_policy_never_searches_by_recency():
    from audience.service import AudiencePolicy
    from shared.errors import AudienceResolutionError

    client = _FakeClient(segments=[])
    with pytest.raises(AudienceResolutionError):
        _resolver(client, policy=AudiencePolicy.SEGMENT_ONLY).resolve(30)
    assert all(c[0] != "search" for c in client.calls)


def test_recency_only_policy_skips_segments():
    client = _FakeClient(search_results={"last_seen_at": _users("z")})
    resolved = _resolver(client, policy="recency_only").resolve(30)

    assert resolved.strategy == "recency"
    assert ("list_segments",) not in client.calls


def test_cap_recipients_preserves_order():
    from audience.service import cap_recipients

    users = _users("a", "b", "c", "d")
    assert [u.id for u in cap_recipients(users, 2)] == ["a", "b"]
    assert cap_recipients(users, 0) == users
    assert cap_recipients(users, 10) == users
