import pytest

BASE = "https://api.test"


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, None),
        ("", None),
        ("https://api.test/contacts?starting_after=abc", "https://api.test/contacts?starting_after=abc"),
        ("/contacts?starting_after=abc", "https://api.test/contacts?starting_after=abc"),
        ({"url": "https://api.test/contacts?starting_after=abc"}, "https://api.test/contacts?starting_after=abc"),
        ({"url": "/contacts?starting_after=abc"}, "https://api.test/contacts?starting_after=abc"),
    ],
)
def test_normalize_cursor_known_shapes(raw, expected):
    from shared.pagination_utils import normalize_cursor

    assert normalize_cursor(raw, BASE) == expected


@pytest.mark.parametrize("raw", [42, ["x"], {"page": 2}, {"url": None}, "starting_after=abc"])
def test_normalize_cursor_other_shapes_are_absent(raw):
    from shared.pagination_utils import normalize_cursor

    assert normalize_cursor(raw, BASE) is None


def test_normalize_cursor_ignores_trailing_slash_on_base():
    from shared.pagination_utils import normalize_cursor

    assert normalize_cursor("/contacts?x=1", BASE + "/") == "https://api.test/contacts?x=1"


def _recipients(*ids):
    from shared.models import Recipient

    return [Recipient(id=i) for i in ids]


class _ScriptedFetcher:
    """Returns pages keyed by URL and records every fetch."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def __call__(self, url, method, body):
        self.calls.append((url, method, body))
        return self.pages[url]


class _CountingPacer:
    def __init__(self):
        self.waits = 0

    def wait(self):
        self.waits += 1


def test_paginator_follows_cursor_and_paces_between_pages():
    from shared.models import Page
    from shared.pagination_utils import CursorPaginator

    fetcher = _ScriptedFetcher({
        "u1": Page(_recipients("a", "b"), "u2", 2),
        "u2": Page(_recipients("c"), None, 1),
    })
    pacer = _CountingPacer()
    items, stats = CursorPaginator(fetcher, pacer).fetch_all("u1", "POST", {"q": 1})

    assert [r.id for r in items] == ["a", "b", "c"]
    assert fetcher.calls == [("u1", "POST", {"q": 1}), ("u2", "GET", None)]
    assert pacer.waits == 1
    assert stats.total_pages == 2
    assert stats.stop_reason == "no_cursor"


def test_paginator_aborts_on_repeated_cursor():
    from shared.errors import TransportError
    from shared.models import Page
    from shared.pagination_utils import CursorPaginator

    fetcher = _ScriptedFetcher({
        "u1": Page(_recipients("a"), "u2", 1),
        "u2": Page(_recipients("b"), "u1", 1),
    })

    with pytest.raises(TransportError) as exc_info:
        CursorPaginator(fetcher, _CountingPacer()).fetch_all("u1")

    assert len(fetcher.calls) == 2
    assert exc_info.value.url == "u1"


def test_paginator_drops_duplicate_ids_across_pages():
    from shared.models import Page
    from shared.pagination_utils import CursorPaginator

    fetcher = _ScriptedFetcher({
        "u1": Page(_recipients("a", "b"), "u2", 2),
        "u2": Page(_recipients("b", "c"), None, 2),
    })
    items, stats = CursorPaginator(fetcher, _CountingPacer()).fetch_all("u1")

    assert [r.id for r in items] == ["a", "b", "c"]
    assert stats.duplicates_dropped == 1


def test_paginator_page_with_only_filtered_items_continues():
    from shared.models import Page
    from shared.pagination_utils import CursorPaginator

    # raw_count > 0 but every contact filtered out: not an empty page
    fetcher = _ScriptedFetcher({
        "u1": Page([], "u2", 3),
        "u2": Page(_recipients("a"), None, 1),
    })
    items, _ = CursorPaginator(fetcher, _CountingPacer()).fetch_all("u1")

    assert [r.id for r in items] == ["a"]
