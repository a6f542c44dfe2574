import threading

import pytest

from graphtx.bookmarks import BookmarkManager, Bookmarks


def test_empty_bookmarks():
    bookmarks = Bookmarks()
    assert len(bookmarks) == 0
    assert not bookmarks
    assert bookmarks.raw_values == frozenset()


def test_from_raw_values_skips_empty_tokens():
    bookmarks = Bookmarks.from_raw_values(["bm:1", "", "bm:2", "bm:1"])
    assert bookmarks.raw_values == frozenset({"bm:1", "bm:2"})
    assert list(bookmarks) == ["bm:1", "bm:2"]


def test_from_raw_values_rejects_non_strings():
    with pytest.raises(TypeError):
        Bookmarks.from_raw_values(["bm:1", 2])


def test_union_keeps_every_token_and_leaves_operands_unchanged():
    left = Bookmarks.from_raw_values(["bm:1"])
    right = Bookmarks.from_raw_values(["bm:2"])

    merged = left + right

    assert merged.raw_values == {"bm:1", "bm:2"}
    assert left.raw_values == {"bm:1"}
    assert right.raw_values == {"bm:2"}
    assert left.merge(right) == merged


def test_merge_with_subset_returns_same_instance():
    bookmarks = Bookmarks.from_raw_values(["bm:1", "bm:2"])
    assert bookmarks.merge(Bookmarks.from_raw_values(["bm:1"])) is bookmarks


def test_add_with_other_type_is_unsupported():
    with pytest.raises(TypeError):
        Bookmarks() + ["bm:1"]


def test_equality_and_hashing():
    first = Bookmarks.from_raw_values(["a", "b"])
    second = Bookmarks.from_raw_values(["b", "a"])
    assert first == second
    assert len({first, second}) == 1
    assert "a" in first
    assert "c" not in first


def test_bookmark_manager_merges_and_notifies_consumer():
    seen = []
    manager = BookmarkManager(["bm:1"], bookmarks_consumer=seen.append)

    current = manager.update_bookmarks(Bookmarks.from_raw_values(["bm:2"]))

    assert current.raw_values == {"bm:1", "bm:2"}
    assert manager.get_bookmarks() == current
    assert seen == [current]


def test_bookmark_manager_thread_safety():
    manager = BookmarkManager()
    errors: list[Exception] = []
    barrier = threading.Barrier(4)

    def worker(offset: int) -> None:
        try:
            barrier.wait()
            for idx in range(100):
                manager.update_bookmarks(Bookmarks.from_raw_values([f"bm:{offset}:{idx}"]))
                manager.get_bookmarks()
        except Exception as exc:  # pragma: no cover - failure path
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(manager.get_bookmarks()) == 400
