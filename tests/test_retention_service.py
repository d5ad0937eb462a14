"""Tests for age and count based eviction."""

from unittest.mock import AsyncMock, Mock

from conftest import run, make_item
from citysquare.models.content import NewsCategory
from citysquare.services.blob_storage import BlobStorage, BlobStorageError
from citysquare.services.config_service import AppConfig, NewsSettings
from citysquare.services.retention_service import AGE_CUTOFF_MS, RetentionEnforcer, select_evictions


NOW_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000


def fixed_clock():
    return NOW_MS / 1000


def fake_storage(delete_side_effect=None) -> Mock:
    real = BlobStorage("https://proj.supabase.co", "key", "urbanhub_assets")
    storage = Mock()
    storage.path_from_public_url = real.path_from_public_url
    storage.public_url = real.public_url
    storage.delete = AsyncMock(side_effect=delete_side_effect)
    return storage


class TestSelectEvictions:
    def test_count_limit_keeps_newest(self) -> None:
        items = [make_item(f"n{i}", NewsCategory.CHINA, NOW_MS - i) for i in range(5)]

        expired, overflow, evicted = select_evictions(items, 3, NOW_MS)

        assert expired == []
        assert overflow == ["n3", "n4"]
        assert evicted == ["n3", "n4"]

    def test_age_and_count_are_unioned(self) -> None:
        items = [
            make_item("fresh", NewsCategory.USA, NOW_MS),
            make_item("stale", NewsCategory.USA, NOW_MS - AGE_CUTOFF_MS - 1),
            make_item("older", NewsCategory.USA, NOW_MS - AGE_CUTOFF_MS - 2),
        ]

        expired, overflow, evicted = select_evictions(items, 2, NOW_MS)

        assert expired == ["stale", "older"]
        assert overflow == ["older"]
        assert evicted == ["stale", "older"]

    def test_item_exactly_at_cutoff_is_kept(self) -> None:
        items = [make_item("edge", NewsCategory.USA, NOW_MS - AGE_CUTOFF_MS)]

        assert select_evictions(items, 50, NOW_MS)[2] == []


class TestRetentionEnforcer:
    def test_sixty_items_over_limit_fifty_evicts_ten_oldest(self, store, config_service) -> None:
        items = [make_item(f"c{i:02d}", NewsCategory.CHINA, NOW_MS - i * 1000) for i in range(60)]
        run(store.save(items))
        enforcer = RetentionEnforcer(store, config_service, clock=fixed_clock)

        report = run(enforcer.enforce(NewsCategory.CHINA))

        remaining = run(store.get_by_category(NewsCategory.CHINA, limit=None))
        assert len(remaining) == 50
        assert sorted(report.evicted_ids) == [f"c{i:02d}" for i in range(50, 60)]
        assert {i.id for i in remaining} == {f"c{i:02d}" for i in range(50)}

    def test_expired_items_evicted_under_limit(self, store, config_service) -> None:
        run(store.save([
            make_item("new", NewsCategory.USA, NOW_MS - HOUR_MS),
            make_item("old", NewsCategory.USA, NOW_MS - 49 * HOUR_MS),
        ]))
        enforcer = RetentionEnforcer(store, config_service, clock=fixed_clock)

        run(enforcer.enforce(NewsCategory.USA))

        assert [i.id for i in run(store.get_by_category(NewsCategory.USA))] == ["new"]

    def test_limit_is_read_fresh_each_pass(self, store, config_service) -> None:
        run(store.save([make_item(f"n{i}", NewsCategory.CANADA, NOW_MS - i) for i in range(10)]))
        enforcer = RetentionEnforcer(store, config_service, clock=fixed_clock)

        run(enforcer.enforce(NewsCategory.CANADA))
        assert run(store.count(NewsCategory.CANADA)) == 10

        run(config_service.save(AppConfig(news=NewsSettings(canada_retention_limit=4))))
        run(enforcer.enforce(NewsCategory.CANADA))

        assert run(store.count(NewsCategory.CANADA)) == 4

    def test_bound_holds_after_save_hook(self, store, config_service) -> None:
        run(config_service.save(AppConfig(news=NewsSettings(usa_retention_limit=3))))
        enforcer = RetentionEnforcer(store, config_service, clock=fixed_clock)
        store.add_save_hook(enforcer.enforce)

        for batch in range(3):
            run(store.save([make_item(f"b{batch}-{i}", NewsCategory.USA, NOW_MS - batch * 10 - i)
                            for i in range(2)]))

        remaining = run(store.get_by_category(NewsCategory.USA, limit=None))
        assert len(remaining) == 3
        assert all(NOW_MS - i.timestamp <= AGE_CUTOFF_MS for i in remaining)

    def test_generated_images_deleted_for_evicted_items(self, store, config_service) -> None:
        storage = fake_storage()
        generated = storage.public_url("generated/old-item.jpg")
        run(store.save([
            make_item("keep", NewsCategory.USA, NOW_MS),
            make_item("gen", NewsCategory.USA, NOW_MS - 49 * HOUR_MS, image_url=generated),
            make_item("ext", NewsCategory.USA, NOW_MS - 50 * HOUR_MS, image_url="https://cdn.cbc.ca/photo.jpg"),
        ]))
        enforcer = RetentionEnforcer(store, config_service, storage=storage, clock=fixed_clock)

        report = run(enforcer.enforce(NewsCategory.USA))

        storage.delete.assert_awaited_once_with(["generated/old-item.jpg"])
        assert report.blobs_deleted == 1
        assert run(store.count(NewsCategory.USA)) == 1

    def test_blob_failure_does_not_block_item_deletion(self, store, config_service) -> None:
        storage = fake_storage(delete_side_effect=BlobStorageError("bucket offline"))
        generated = storage.public_url("generated/old-item.jpg")
        run(store.save([make_item("gen", NewsCategory.USA, NOW_MS - 49 * HOUR_MS, image_url=generated)]))
        enforcer = RetentionEnforcer(store, config_service, storage=storage, clock=fixed_clock)

        report = run(enforcer.enforce(NewsCategory.USA))

        assert report.evicted_ids == ["gen"]
        assert report.blobs_deleted == 0
        assert run(store.count(NewsCategory.USA)) == 0
