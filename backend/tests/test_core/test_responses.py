"""
Unit tests for the response envelope and pagination helpers
"""
from app.core.responses import Pagination, clamp_pagination, paginated, pagination_meta, success


class TestClampPagination:
    """perPage is clamped to 1..100 and page to >= 1"""

    def test_defaults(self):
        pagination = clamp_pagination(None, None)

        assert pagination.page == 1
        assert pagination.per_page == 10

    def test_per_page_zero_becomes_one(self):
        assert clamp_pagination(1, 0).per_page == 1

    def test_per_page_above_max_is_capped(self):
        assert clamp_pagination(1, 500).per_page == 100

    def test_negative_page_becomes_first_page(self):
        assert clamp_pagination(-3, 20).page == 1

    def test_offset_and_limit(self):
        pagination = Pagination(page=3, per_page=25)

        assert pagination.offset == 50
        assert pagination.limit == 25


class TestEnvelope:

    def test_success_omits_empty_message_and_meta(self):
        assert success({"id": 1}) == {"data": {"id": 1}}

    def test_success_with_message(self):
        body = success([], message="Done")

        assert body == {"data": [], "message": "Done"}

    def test_pagination_meta(self):
        meta = pagination_meta(Pagination(page=2, per_page=10), total=35)

        assert meta == {
            "page": 2,
            "perPage": 10,
            "total": 35,
            "totalPages": 4,
            "hasNextPage": True,
            "hasPreviousPage": True,
        }

    def test_pagination_meta_empty_result(self):
        meta = pagination_meta(Pagination(), total=0)

        assert meta["totalPages"] == 0
        assert meta["hasNextPage"] is False

    def test_paginated_wraps_items(self):
        body = paginated([{"id": 1}], 1, Pagination())

        assert body["data"] == [{"id": 1}]
        assert body["meta"]["total"] == 1
