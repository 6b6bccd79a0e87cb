"""Property-based tests for set reconciliation and path sanitization."""

from __future__ import annotations

import string

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from assetsync.services.inventory_service import missing_keys, normalize_path, sanitize_path

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_KEYS = st.sets(st.text(alphabet=string.ascii_lowercase + "/", max_size=6), max_size=12)
_RESERVED = ':<>"|?*'


class TestMissingKeysProperties:
    @PROPERTY_SETTINGS
    @given(source=_KEYS, target=_KEYS)
    def test_equals_set_difference(self, source: set[str], target: set[str]) -> None:
        assert missing_keys(source, target) == source - target

    @PROPERTY_SETTINGS
    @given(source=_KEYS)
    def test_self_difference_is_empty(self, source: set[str]) -> None:
        assert missing_keys(source, source) == set()

    @PROPERTY_SETTINGS
    @given(target=_KEYS)
    def test_empty_source(self, target: set[str]) -> None:
        assert missing_keys(set(), target) == set()


class TestSanitizeProperties:
    @PROPERTY_SETTINGS
    @given(path=st.text(max_size=40))
    def test_output_has_no_reserved_characters(self, path: str) -> None:
        result = sanitize_path(path)
        assert not any(c in result for c in _RESERVED)
        assert not any(ord(c) < 0x20 for c in result)

    @PROPERTY_SETTINGS
    @given(path=st.text(max_size=40))
    def test_idempotent(self, path: str) -> None:
        once = sanitize_path(path)
        assert sanitize_path(once) == once

    @PROPERTY_SETTINGS
    @given(path=st.text(max_size=40))
    def test_separator_count_preserved(self, path: str) -> None:
        assert sanitize_path(path).count("/") == path.count("/")

    @PROPERTY_SETTINGS
    @given(path=st.text(alphabet=string.ascii_lowercase + "/", max_size=20))
    def test_normalize_has_no_empty_segments(self, path: str) -> None:
        normalized = normalize_path(path)
        assert "//" not in normalized
        assert not normalized.startswith("/")
        assert not normalized.endswith("/")
