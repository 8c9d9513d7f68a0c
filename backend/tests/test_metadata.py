"""Tests for per-dataset metadata aggregation.

This module exercises MetadataAggregator against the in-memory key-value
store, covering:
    - record creation on first insert and idempotent defaults,
    - count, size and bounds after inserts, updates and deletes,
    - concurrent inserts producing the same record as sequential ones,
    - deletes leaving the bounding box untouched,
    - a full rebuild agreeing with incremental maintenance,
    - adjustments on a missing record raising MetadataNotFoundError.

The in-memory store yields to the event loop on every call, so coroutines
run with asyncio.gather genuinely interleave their conditional updates.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from featurestore.core import errors
from featurestore.db import database
from featurestore.db import models as db_models
from featurestore.services import encoding, metadata


def _point(fid: str, x: float, y: float, **props: Any) -> db_models.Feature:
    return {
        "type": "Feature",
        "id": fid,
        "geometry": {"type": "Point", "coordinates": [x, y]},
        "properties": props,
    }


FEATURES = [
    _point("a", -10.0, 5.0, name="a"),
    _point("b", 20.0, -3.0, name="b"),
    _point("c", 3.0, 40.0, name="c"),
    _point("d", 0.5, 0.5),
]


def _aggregator(
    store: database.InMemoryKeyValueStore | None = None,
) -> metadata.MetadataAggregator:
    return metadata.MetadataAggregator(
        store or database.InMemoryKeyValueStore(), "parks"
    )


def _get(aggregator: metadata.MetadataAggregator) -> db_models.DatasetMetadata:
    info = asyncio.run(aggregator.get_info())
    assert info is not None
    return info


def test_get_info_missing_record() -> None:
    """Test that a dataset without a record has no info."""
    assert asyncio.run(_aggregator().get_info()) is None


def test_default_info_is_idempotent() -> None:
    """Test that defaults are written once and never overwrite data."""
    aggregator = _aggregator()
    assert asyncio.run(aggregator.default_info()) is True
    asyncio.run(aggregator.adjust_properties(count=2, size=10))
    assert asyncio.run(aggregator.default_info()) is False

    info = _get(aggregator)
    assert info.count == 2
    assert info.size == 10
    assert info.bounds == db_models.EMPTY_BOUNDS


def test_add_feature_creates_and_updates_record() -> None:
    """Test that the first insert creates the record."""
    aggregator = _aggregator()
    feature = FEATURES[0]
    asyncio.run(aggregator.add_feature(db_models.RawFeature(feature)))

    info = _get(aggregator)
    assert info.dataset == "parks"
    assert info.id == "metadata!parks"
    assert info.count == 1
    assert info.size == encoding.encoded_size(feature)
    assert info.bounds == (-10.0, 5.0, -10.0, 5.0)
    assert info.minzoom is not None
    assert info.maxzoom is not None


def test_add_feature_from_store_record() -> None:
    """Test that a StoreRecord's stored size and extent are used."""
    aggregator = _aggregator()
    record = db_models.StoreRecord(
        dataset="parks",
        id="id!x",
        cell="",
        size=123,
        west=1.0,
        south=2.0,
        east=3.0,
        north=4.0,
    )
    asyncio.run(aggregator.add_feature(record))

    info = _get(aggregator)
    assert info.size == 123
    assert info.bounds == (1.0, 2.0, 3.0, 4.0)


def test_concurrent_adds_match_sequential() -> None:
    """Test that interleaved inserts give the sequential result."""
    concurrent = _aggregator()

    async def add_all() -> None:
        await asyncio.gather(
            *(
                concurrent.add_feature(db_models.RawFeature(f))
                for f in FEATURES
            )
        )

    asyncio.run(add_all())

    sequential = _aggregator()
    for feature in FEATURES:
        asyncio.run(sequential.add_feature(db_models.RawFeature(feature)))

    got = _get(concurrent)
    want = _get(sequential)
    assert got.count == want.count == len(FEATURES)
    assert got.size == want.size
    assert got.bounds == want.bounds == (-10.0, -3.0, 20.0, 40.0)


def test_delete_feature_keeps_bounds() -> None:
    """Test that deletes shrink count and size but not the bounds."""
    aggregator = _aggregator()
    for feature in FEATURES[:2]:
        asyncio.run(aggregator.add_feature(db_models.RawFeature(feature)))
    before = _get(aggregator)

    asyncio.run(aggregator.delete_feature(db_models.RawFeature(FEATURES[1])))
    after = _get(aggregator)

    assert after.count == 1
    assert after.size == encoding.encoded_size(FEATURES[0])
    assert after.bounds == before.bounds


def test_update_feature_applies_size_delta_and_widens() -> None:
    """Test that an update moves the size and only widens the bounds."""
    aggregator = _aggregator()
    before = FEATURES[3]
    asyncio.run(aggregator.add_feature(db_models.RawFeature(before)))

    after = _point("d", 50.0, 60.0, note="moved and renamed")
    asyncio.run(
        aggregator.update_feature(
            db_models.RawFeature(before), db_models.RawFeature(after)
        )
    )

    info = _get(aggregator)
    assert info.count == 1
    assert info.size == encoding.encoded_size(after)
    assert info.bounds == (0.5, 0.5, 50.0, 60.0)


def test_adjust_bounds_only_moves_outward() -> None:
    """Test that a narrower box leaves the stored bounds alone."""
    aggregator = _aggregator()
    asyncio.run(aggregator.default_info())
    asyncio.run(aggregator.adjust_bounds((-5.0, -5.0, 5.0, 5.0)))
    asyncio.run(aggregator.adjust_bounds((-1.0, -6.0, 1.0, 1.0)))
    assert _get(aggregator).bounds == (-5.0, -6.0, 5.0, 5.0)


@pytest.mark.parametrize(
    "operation",
    [
        lambda a: a.adjust_properties(count=1, size=1),
        lambda a: a.adjust_bounds((0.0, 0.0, 1.0, 1.0)),
        lambda a: a.delete_feature(db_models.RawFeature(FEATURES[0])),
        lambda a: a.update_feature(
            db_models.RawFeature(FEATURES[0]),
            db_models.RawFeature(FEATURES[1]),
        ),
    ],
)
def test_adjustments_require_record(operation: Any) -> None:
    """Test that adjustments never create a missing record."""
    store = database.InMemoryKeyValueStore()
    aggregator = _aggregator(store)
    with pytest.raises(errors.MetadataNotFoundError) as excinfo:
        asyncio.run(operation(aggregator))
    assert excinfo.value.dataset == "parks"


def test_add_feature_rejects_invalid_feature() -> None:
    """Test that an unmeasurable feature leaves the store untouched."""
    aggregator = _aggregator()
    bad = {"type": "Feature", "geometry": None, "properties": {}}
    with pytest.raises(errors.EncodingError):
        asyncio.run(aggregator.add_feature(db_models.RawFeature(bad)))
    assert asyncio.run(aggregator.get_info()) is None


def test_calculate_info_agrees_with_incremental() -> None:
    """Test that a full rebuild matches incremental maintenance."""
    store = database.InMemoryKeyValueStore()
    aggregator = _aggregator(store)
    encoder = encoding.RecordEncoder(bucket="blobs", prefix="features")

    async def insert_all() -> None:
        for feature in FEATURES:
            record, _ = encoder.to_database_record(feature, "parks")
            await store.put_item(record.to_item())
            await aggregator.add_feature(record)

    asyncio.run(insert_all())
    incremental = _get(aggregator)
    rebuilt = asyncio.run(aggregator.calculate_info())

    assert rebuilt.count == incremental.count
    assert rebuilt.size == incremental.size
    assert rebuilt.bounds == incremental.bounds
    assert (rebuilt.minzoom, rebuilt.maxzoom) == (
        incremental.minzoom,
        incremental.maxzoom,
    )
    assert _get(aggregator).count == len(FEATURES)


def test_calculate_info_agrees_after_updates_and_deletes() -> None:
    """Test that a rebuild matches after mixed inserts, updates, deletes."""
    store = database.InMemoryKeyValueStore()
    aggregator = _aggregator(store)
    encoder = encoding.RecordEncoder(bucket="blobs", prefix="features")

    async def write(
        feature: db_models.Feature,
    ) -> db_models.StoreRecord:
        record, _ = encoder.to_database_record(feature, "parks")
        await store.put_item(record.to_item())
        return record

    async def run() -> None:
        records = {}
        for feature in FEATURES:
            records[feature["id"]] = await write(feature)
            await aggregator.add_feature(records[feature["id"]])

        moved = _point("a", -2.0, 1.0, name="moved", extra="x" * 50)
        after = await write(moved)
        await aggregator.update_feature(records["a"], after)

        await store.delete_items([db_models.feature_key("parks", "b")])
        await aggregator.delete_feature(records["b"])

    asyncio.run(run())
    incremental = _get(aggregator)
    rebuilt = asyncio.run(aggregator.calculate_info())

    assert rebuilt.count == incremental.count == len(FEATURES) - 1
    assert rebuilt.size == incremental.size
    assert rebuilt.west >= incremental.west
    assert rebuilt.south >= incremental.south
    assert rebuilt.east <= incremental.east
    assert rebuilt.north <= incremental.north
    assert incremental.bounds == (-10.0, -3.0, 20.0, 40.0)
    assert rebuilt.bounds == (-2.0, 0.5, 3.0, 40.0)


def test_calculate_info_agrees_for_assigned_ids() -> None:
    """Test that features given an id on write are measured as stored."""
    store = database.InMemoryKeyValueStore()
    aggregator = _aggregator(store)
    encoder = encoding.RecordEncoder(bucket="blobs", prefix="features")
    feature = {k: v for k, v in FEATURES[0].items() if k != "id"}
    record, _ = encoder.to_database_record(feature, "parks")

    async def run() -> None:
        await store.put_item(record.to_item())
        await aggregator.add_feature(record)

    asyncio.run(run())
    incremental = _get(aggregator)
    rebuilt = asyncio.run(aggregator.calculate_info())

    assert incremental.size == rebuilt.size == record.size
    assert record.size > metadata.MetadataAggregator.get_feature_info(
        feature
    ).size


def test_calculate_info_empty_dataset() -> None:
    """Test that rebuilding a dataset without features stores defaults."""
    aggregator = _aggregator()
    info = asyncio.run(aggregator.calculate_info())
    assert info.count == 0
    assert info.size == 0
    assert info.bounds == db_models.EMPTY_BOUNDS
    assert (info.minzoom, info.maxzoom) == (0, 0)
    assert _get(aggregator).count == 0


def test_get_feature_info() -> None:
    """Test that feature info combines encoded size and extent."""
    feature = FEATURES[1]
    info = metadata.MetadataAggregator.get_feature_info(feature)
    assert info.size == encoding.encoded_size(feature)
    assert info.bounds == (20.0, -3.0, 20.0, -3.0)
