"""
Tests for content hashing and the sync hash store.
"""
import hashlib
import json

import pytest
from sqlalchemy.exc import IntegrityError

from coffee_commerce.models import SyncHash, SyncHashHistory, SyncSource
from coffee_commerce.services.provider import ProviderProduct
from coffee_commerce.services.sync_hash import (
    SyncHashStore,
    canonical_json,
    compute_provider_product_hash,
    compute_variant_hash,
)
from tests.helpers import provider_product_obj


class TestCanonicalHash:
    """Canonical JSON and SHA-256 content hashes."""

    def test_canonical_json_sorts_keys_without_whitespace(self):
        assert canonical_json({"b": 1, "a": [1, 2], "c": {"z": True, "y": None}}) == \
            '{"a":[1,2],"b":1,"c":{"y":null,"z":true}}'

    def test_provider_product_hash_matches_reference_vector(self):
        product = ProviderProduct(
            id="prod_A",
            name="Kenya AA",
            images=["https://img/b.jpg", "https://img/a.jpg"],
            metadata={"weight": "12oz", "sync_hash": "abc", "last_sync": "now", "sync_source": "x"},
        )
        expected = (
            '{"active":true,"description":"","id":"prod_A",'
            '"images":["https://img/a.jpg","https://img/b.jpg"],'
            '"metadata":{"weight":"12oz"},"name":"Kenya AA"}'
        )

        assert compute_provider_product_hash(product) == hashlib.sha256(expected.encode()).hexdigest()

    def test_hash_is_lowercase_hex(self):
        digest = compute_provider_product_hash(ProviderProduct(id="prod_A", name="Kenya AA"))

        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)

    def test_reserved_metadata_and_image_order_do_not_change_hash(self):
        base = ProviderProduct(id="prod_A", name="Kenya AA", images=["a", "b"], metadata={"weight": "12oz"})
        noisy = ProviderProduct(
            id="prod_A", name="Kenya AA", images=["b", "a"],
            metadata={"weight": "12oz", "sync_hash": "deadbeef", "last_sync": "2024-01-01"},
        )

        assert compute_provider_product_hash(base) == compute_provider_product_hash(noisy)

    def test_content_changes_change_hash(self):
        base = ProviderProduct(id="prod_A", name="Kenya AA", metadata={"weight": "12oz"})
        renamed = ProviderProduct(id="prod_A", name="Kenya AB", metadata={"weight": "12oz"})
        deactivated = ProviderProduct(id="prod_A", name="Kenya AA", active=False, metadata={"weight": "12oz"})

        hashes = {compute_provider_product_hash(p) for p in (base, renamed, deactivated)}
        assert len(hashes) == 3

    def test_hash_stable_across_decode_and_reencode(self):
        obj = provider_product_obj("prod_A", "Ethiopia Yirgacheffe – 12oz", {"product_id": "x", "weight": "12oz"})
        first = compute_provider_product_hash(ProviderProduct.from_dict(obj))
        reencoded = json.loads(json.dumps(json.loads(json.dumps(obj)), indent=2))

        assert compute_provider_product_hash(ProviderProduct.from_dict(reencoded)) == first

    def test_variant_hash_tracks_stock_and_options(self, make_product, make_variant):
        variant = make_variant(make_product())
        before = compute_variant_hash(variant)

        variant.stock_level = 5
        after_stock = compute_variant_hash(variant)
        variant.options = {"weight": "3lb"}
        after_options = compute_variant_hash(variant)

        assert len({before, after_stock, after_options}) == 3


class TestSyncHashStore:
    """Upsert, lookups, history and uniqueness of stored sync hashes."""

    @pytest.fixture
    def variant(self, make_product, make_variant):
        return make_variant(make_product())

    def test_upsert_inserts_then_replaces_single_row(self, db, variant):
        store = SyncHashStore(db)

        store.upsert(variant.id, "prod_A", "a" * 64, SyncSource.PROVIDER_WEBHOOK)
        store.upsert(variant.id, "prod_A", "b" * 64, SyncSource.RECONCILER)

        rows = db.query(SyncHash).all()
        assert len(rows) == 1
        assert rows[0].content_hash == "b" * 64
        assert rows[0].sync_source == SyncSource.RECONCILER
        assert rows[0].algorithm == "sha256"

    def test_every_upsert_is_appended_to_history(self, db, variant):
        store = SyncHashStore(db)
        for digest in ("1" * 64, "2" * 64, "3" * 64):
            store.upsert(variant.id, "prod_A", digest, SyncSource.PROVIDER_WEBHOOK)

        history = store.history(variant.id)

        assert [h.content_hash for h in history] == ["3" * 64, "2" * 64, "1" * 64]
        assert len(store.history(variant.id, limit=2)) == 2

    def test_get_latest_is_scoped_to_the_pair(self, db, variant):
        store = SyncHashStore(db)
        store.upsert(variant.id, "prod_A", "a" * 64, SyncSource.PROVIDER_WEBHOOK)

        assert store.get_latest(variant.id, "prod_A").content_hash == "a" * 64
        assert store.get_latest(variant.id, "prod_OTHER") is None
        assert store.matches(variant.id, "prod_A", "a" * 64)
        assert not store.matches(variant.id, "prod_A", "b" * 64)

    def test_latest_by_variant_and_by_provider(self, db, variant):
        store = SyncHashStore(db)
        store.upsert(variant.id, "prod_A", "a" * 64, SyncSource.PROVIDER_WEBHOOK)
        store.upsert(variant.id, "prod_B", "b" * 64, SyncSource.LOCAL_API)

        assert store.get_latest_by_variant(variant.id).provider_product_id == "prod_B"
        assert store.get_latest_by_provider("prod_A").content_hash == "a" * 64
        assert store.get_latest_by_provider("prod_missing") is None

    def test_delete_by_variant(self, db, variant):
        store = SyncHashStore(db)
        store.upsert(variant.id, "prod_A", "a" * 64, SyncSource.PROVIDER_WEBHOOK)
        store.upsert(variant.id, "prod_B", "b" * 64, SyncSource.PROVIDER_WEBHOOK)

        assert store.delete_by_variant(variant.id) == 2
        assert store.get_latest_by_variant(variant.id) is None

    def test_pair_uniqueness_enforced_by_database(self, db, variant):
        db.add(SyncHash(variant_id=variant.id, provider_product_id="prod_A",
                        content_hash="a" * 64, sync_source=SyncSource.PROVIDER_WEBHOOK))
        db.commit()
        db.add(SyncHash(variant_id=variant.id, provider_product_id="prod_A",
                        content_hash="b" * 64, sync_source=SyncSource.PROVIDER_WEBHOOK))

        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_hashes_removed_with_their_variant(self, db, variant):
        store = SyncHashStore(db)
        store.upsert(variant.id, "prod_A", "a" * 64, SyncSource.PROVIDER_WEBHOOK)

        db.delete(variant)
        db.commit()

        assert db.query(SyncHash).count() == 0
        assert db.query(SyncHashHistory).count() == 0
