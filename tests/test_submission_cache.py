import pytest

from app.portal.modules.applications.dedup import SubmissionCache


def test_add_and_contains():
    cache = SubmissionCache(max_size=3)
    cache.add("a")
    assert "a" in cache
    assert "b" not in cache
    assert len(cache) == 1


def test_oldest_entry_is_evicted():
    cache = SubmissionCache(max_size=3)
    for sid in ("a", "b", "c", "d"):
        cache.add(sid)
    assert "a" not in cache
    assert len(cache) == 3


def test_lookup_refreshes_recency():
    cache = SubmissionCache(max_size=3)
    for sid in ("a", "b", "c"):
        cache.add(sid)
    assert "a" in cache  # a becomes most recent
    cache.add("d")
    assert "a" in cache
    assert "b" not in cache


def test_re_adding_does_not_grow():
    cache = SubmissionCache(max_size=2)
    cache.add("a")
    cache.add("a")
    assert len(cache) == 1


def test_invalid_size():
    with pytest.raises(ValueError):
        SubmissionCache(max_size=0)
