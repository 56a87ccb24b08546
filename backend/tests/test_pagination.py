import pytest
from hypothesis import given, strategies as st

from lms_telemetry.utils.pagination import resolve_pagination


class TestResolvePagination:

    @pytest.mark.parametrize("page,limit,expected", [
        (1, 50, (1, 50, 0)),
        (3, 20, (3, 20, 40)),
        (0, 10, (1, 10, 0)),
        (-4, 10, (1, 10, 0)),
        (None, None, (1, 50, 0)),
        ("2", "10", (1, 50, 0)),
        (2, 0, (2, 50, 50)),
        (2, -1, (2, 50, 50)),
        (1, 500, (1, 100, 0)),
        (True, True, (1, 50, 0)),
    ])
    def test_sanitizes(self, page, limit, expected):
        assert resolve_pagination(page, limit) == expected

    def test_custom_bounds(self):
        assert resolve_pagination(2, None, default_limit=25, max_limit=30) == (2, 25, 25)
        assert resolve_pagination(1, 31, default_limit=25, max_limit=30) == (1, 30, 0)

    @given(st.integers(), st.integers())
    def test_always_in_range(self, page, limit):
        """Property: any integer input yields a usable window."""
        p, l, offset = resolve_pagination(page, limit)
        assert p >= 1
        assert 1 <= l <= 100
        assert offset == (p - 1) * l
