"""Tests for pagination helpers."""

from contributor_sync.utils.pagination import (
    get_next_page_url,
    is_last_page,
    parse_link_header,
)

BASE = "https://api.github.com/repos/rust-lang/rust/contributors"


class TestParseLinkHeader:
    """Tests for Link header parsing."""

    def test_parse_multiple_links(self):
        header = (
            f'<{BASE}?page=2>; rel="next", '
            f'<{BASE}?page=5>; rel="last", '
            f'<{BASE}?page=1>; rel="first"'
        )
        links = parse_link_header(header)

        assert links["next"] == f"{BASE}?page=2"
        assert links["last"] == f"{BASE}?page=5"
        assert links["first"] == f"{BASE}?page=1"

    def test_parse_empty_header(self):
        assert parse_link_header(None) == {}
        assert parse_link_header("") == {}

    def test_next_page_url(self):
        assert get_next_page_url(f'<{BASE}?page=2>; rel="next"') == f"{BASE}?page=2"
        assert get_next_page_url(f'<{BASE}?page=1>; rel="first"') is None


class TestIsLastPage:
    """Tests for the page walk terminal conditions."""

    def test_short_page(self):
        assert is_last_page({}, page=1, item_count=42, per_page=100)

    def test_full_page_without_hints_continues(self):
        assert not is_last_page({}, page=1, item_count=100, per_page=100)

    def test_empty_page(self):
        assert is_last_page({}, page=3, item_count=0, per_page=100)

    def test_gitee_total_page_header(self):
        assert is_last_page({"total_page": "3"}, page=3, item_count=100, per_page=100)
        assert not is_last_page({"total_page": "3"}, page=2, item_count=100, per_page=100)

    def test_bad_total_page_falls_through(self):
        assert not is_last_page({"total_page": "many"}, page=1, item_count=100, per_page=100)

    def test_link_header_without_next(self):
        headers = {"link": f'<{BASE}?page=1>; rel="first"'}
        assert is_last_page(headers, page=4, item_count=100, per_page=100)

    def test_link_header_with_next(self):
        headers = {"link": f'<{BASE}?page=5>; rel="next"'}
        assert not is_last_page(headers, page=4, item_count=100, per_page=100)
