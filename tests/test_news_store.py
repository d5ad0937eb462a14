"""Tests for SQLite news persistence."""

from unittest.mock import AsyncMock

from conftest import run, make_item
from citysquare.models.content import NewsCategory


class TestNewsStore:
    def test_save_is_idempotent_upsert(self, store) -> None:
        item = make_item("news-Canada-1-0", NewsCategory.CANADA, 1000, source_url="https://cbc.ca/a")

        run(store.save([item]))
        run(store.save([make_item("news-Canada-1-0", NewsCategory.CANADA, 1000,
                                  title="Updated title", source_url="https://cbc.ca/a")]))

        items = run(store.get_by_category(NewsCategory.CANADA))
        assert len(items) == 1
        assert items[0].title == "Updated title"

    def test_get_by_category_orders_newest_first_and_limits(self, store) -> None:
        run(store.save([make_item(f"n{i}", NewsCategory.USA, 1000 + i) for i in range(5)]))
        run(store.save([make_item("other", NewsCategory.CHINA, 9999)]))

        items = run(store.get_by_category(NewsCategory.USA, limit=3))

        assert [i.id for i in items] == ["n4", "n3", "n2"]
        assert len(run(store.get_by_category(NewsCategory.USA, limit=None))) == 5

    def test_city_filter(self, store) -> None:
        run(store.save([
            make_item("a", NewsCategory.LOCAL, 1, city="Nowhereville"),
            make_item("b", NewsCategory.LOCAL, 2, city="Elsewhere"),
        ]))

        items = run(store.get_by_category(NewsCategory.LOCAL, city="Nowhereville"))

        assert [i.id for i in items] == ["a"]
        assert items[0].city == "Nowhereville"

    def test_check_exists_returns_stored_subset(self, store) -> None:
        run(store.save([make_item("a", NewsCategory.CANADA, 1, source_url="https://cbc.ca/a")]))

        found = run(store.check_exists(["https://cbc.ca/a", "https://cbc.ca/b", ""]))

        assert found == {"https://cbc.ca/a"}
        assert run(store.check_exists([])) == set()

    def test_last_update_time(self, store) -> None:
        assert run(store.get_last_update_time(NewsCategory.CANADA)) == 0

        run(store.save([make_item("a", NewsCategory.CANADA, 10), make_item("b", NewsCategory.CANADA, 30)]))

        assert run(store.get_last_update_time(NewsCategory.CANADA)) == 30

    def test_delete_many_and_count(self, store) -> None:
        run(store.save([make_item(f"n{i}", NewsCategory.USA, i) for i in range(4)]))

        deleted = run(store.delete_many(["n0", "n1", "missing"]))

        assert deleted == 2
        assert run(store.count(NewsCategory.USA)) == 2
        assert run(store.delete_many([])) == 0

    def test_recent_titles(self, store) -> None:
        run(store.save([make_item("a", NewsCategory.CHINA, 1, title="One"),
                        make_item("b", NewsCategory.CHINA, 2, title="Two")]))

        assert run(store.get_recent_titles(NewsCategory.CHINA)) == {"One", "Two"}
        assert run(store.get_recent_titles(NewsCategory.CHINA, limit=1)) == {"Two"}

    def test_save_hooks_run_once_per_category(self, store) -> None:
        hook = AsyncMock()
        store.add_save_hook(hook)

        run(store.save([
            make_item("a", NewsCategory.CHINA, 1),
            make_item("b", NewsCategory.CHINA, 2),
            make_item("c", NewsCategory.USA, 3),
        ]))

        assert [call.args[0] for call in hook.await_args_list] == [NewsCategory.CHINA, NewsCategory.USA]

    def test_failing_hook_does_not_fail_save(self, store) -> None:
        store.add_save_hook(AsyncMock(side_effect=RuntimeError("hook broke")))

        run(store.save([make_item("a", NewsCategory.CHINA, 1)]))

        assert run(store.count(NewsCategory.CHINA)) == 1

    def test_clear_category(self, store) -> None:
        run(store.save([make_item("a", NewsCategory.CHINA, 1), make_item("b", NewsCategory.USA, 1)]))

        assert run(store.clear_category(NewsCategory.CHINA)) == 1
        assert run(store.count(NewsCategory.USA)) == 1
