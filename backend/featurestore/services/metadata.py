"""Per-dataset metadata aggregation over a shared key-value store.

Each dataset has one metadata record summarizing its live features: count,
total encoded size and bounding box. Many writers update it at once, so every
incremental change is a conditional update that commutes with every other:

- count and size move by additive deltas, guarded only by the record
  existing;
- each bound moves independently and only outward, guarded by "the stored
  value is less extreme than the new one".

Interleaving these updates in any order gives the same final record, so no
read-modify-write cycle or lock is needed. Deletes never tighten the bounds.
``calculate_info`` rebuilds the record from a full scan and overwrites it
unconditionally; it must not run while other writers are active.

Example:
    Keep a dataset's summary in step with feature writes:
        >>> from featurestore.db import models as db_models
        >>> aggregator = MetadataAggregator(store, "parks")
        >>> await aggregator.add_feature(db_models.RawFeature(feature))
        >>> info = await aggregator.get_info()
        >>> info.count, info.minzoom, info.maxzoom
        (1, 0, 22)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from featurestore.core import errors
from featurestore.core.logging_config import get_logger
from featurestore.db import models as db_models
from featurestore.services import encoding, extent, zoom
from featurestore.utils import concurrency

if TYPE_CHECKING:
    from collections.abc import Mapping

    from featurestore.db import database

_LOGGER = get_logger(__name__)

_BOUND_LABELS = ("west", "south", "east", "north")


class MetadataAggregator:
    """Client for the metadata record of a single dataset.

    Attributes:
        dataset: Dataset whose record this client maintains.
        record_id: Sort key of the metadata record.
        key: Full store key of the metadata record.
    """

    def __init__(
        self,
        store: database.KeyValueStoreProtocol,
        dataset: str,
        grid: zoom.TileGrid = zoom.DEFAULT_GRID,
    ) -> None:
        self.store = store
        self.dataset = dataset
        self.grid = grid
        self.key = db_models.metadata_key(dataset)
        self.record_id = self.key["id"]

    async def _conditional_update(
        self,
        condition: db_models.Condition,
        put: Mapping[str, Any],
        add: Mapping[str, int] | None = None,
    ) -> bool:
        """Apply a conditional update; return whether it was applied.

        A failed condition on an existing record means "nothing to do" and
        returns False. A failed condition on a missing record raises.

        Raises:
            MetadataNotFoundError: If the record does not exist and the
                condition requires a stored value.
        """
        try:
            await self.store.update_item(
                self.key, put=put, add=add, condition=condition
            )
        except errors.ConditionFailedError as error:
            if error.item_exists or condition.op == "NULL":
                return False
            raise errors.MetadataNotFoundError(self.dataset) from error
        return True

    async def get_info(self) -> db_models.DatasetMetadata | None:
        """Return the prepared metadata record, or None if there is none."""
        item = await self.store.get_item(self.key)
        if item is None:
            return None
        record = db_models.DatasetMetadata.from_item(item)
        return zoom.prepare(record, self.grid)

    @staticmethod
    def get_feature_info(
        feature: Mapping[str, Any],
    ) -> db_models.FeatureInfo:
        """Return the encoded size and extent of a GeoJSON feature.

        The size covers the feature as given. A feature without an id is
        assigned one when it is written, which lengthens its payload, so
        such features should be folded in as the written StoreRecord.

        Raises:
            EncodingError: If the feature cannot be measured.
        """
        west, south, east, north = extent.feature_extent(feature)
        return db_models.FeatureInfo(
            size=encoding.encoded_size(feature),
            west=west,
            south=south,
            east=east,
            north=north,
        )

    def _info(self, item: db_models.FeatureInput) -> db_models.FeatureInfo:
        match item:
            case db_models.StoreRecord():
                return item.info
            case db_models.RawFeature(feature=feature):
                return self.get_feature_info(feature)
        raise TypeError(f"Expected RawFeature or StoreRecord, got {item!r}")

    async def default_info(self) -> bool:
        """Create the record with empty defaults unless one already exists.

        Returns:
            True if the record was created, False if it already existed.
        """
        defaults = db_models.DatasetMetadata.empty(self.dataset).to_item()
        del defaults["dataset"]
        del defaults["id"]
        created = await self._conditional_update(
            db_models.Condition("id", "NULL"), put=defaults
        )
        if created:
            _LOGGER.info("metadata_created", dataset=self.dataset)
        return created

    async def calculate_info(self) -> db_models.DatasetMetadata:
        """Rebuild the record from every feature record in the dataset.

        The fresh totals overwrite the stored record unconditionally, which
        discards any incremental update that lands during the scan. Run it
        only while no other writer touches the dataset.

        Returns:
            The rebuilt, prepared metadata record.
        """
        info = db_models.DatasetMetadata.empty(self.dataset)
        async for item in self.store.query(
            self.dataset, db_models.FEATURE_PREFIX
        ):
            record = db_models.StoreRecord.from_item(item)
            info.count += 1
            info.size += record.size
            info.west = min(info.west, record.west)
            info.south = min(info.south, record.south)
            info.east = max(info.east, record.east)
            info.north = max(info.north, record.north)

        info.updated = db_models.now_millis()
        await self.store.put_item(info.to_item())
        _LOGGER.info(
            "metadata_rebuilt",
            dataset=self.dataset,
            count=info.count,
            size=info.size,
            bounds=list(info.bounds),
        )
        return zoom.prepare(info, self.grid)

    async def adjust_bounds(self, bounds: db_models.BBox) -> None:
        """Widen the stored bounds to include ``bounds``.

        Each edge is updated on its own and only when the new value is more
        extreme. This never creates the record.

        Raises:
            MetadataNotFoundError: If the record does not exist.
        """
        updated = db_models.now_millis()
        updates = []
        for i, (label, bound) in enumerate(zip(_BOUND_LABELS, bounds)):
            op = "GT" if i < 2 else "LT"
            updates.append(
                self._conditional_update(
                    db_models.Condition(label, op, bound),
                    put={label: bound, "updated": updated},
                )
            )
        await concurrency.gather_all(*updates)

    async def adjust_properties(
        self,
        count: int | None = None,
        size: int | None = None,
    ) -> None:
        """Increment or decrement ``count`` and/or ``size``.

        This never creates the record.

        Raises:
            MetadataNotFoundError: If the record does not exist.
        """
        add = {
            name: delta
            for name, delta in (("count", count), ("size", size))
            if delta is not None
        }
        await self._conditional_update(
            db_models.Condition("id", "NOT_NULL"),
            put={"updated": db_models.now_millis()},
            add=add,
        )

    async def add_feature(self, item: db_models.FeatureInput) -> None:
        """Fold a newly inserted feature into the record.

        Creates the record first if the dataset has none.
        """
        info = self._info(item)
        await self.default_info()
        await concurrency.gather_all(
            self.adjust_properties(count=1, size=info.size),
            self.adjust_bounds(info.bounds),
        )

    async def update_feature(
        self,
        before: db_models.FeatureInput,
        after: db_models.FeatureInput,
    ) -> None:
        """Fold a changed feature into the record.

        Applies the size difference and widens the bounds to the new extent.
        A smaller new extent does not narrow the bounds. This never creates
        the record.

        Raises:
            MetadataNotFoundError: If the record does not exist.
        """
        before_info = self._info(before)
        after_info = self._info(after)
        await concurrency.gather_all(
            self.adjust_properties(size=after_info.size - before_info.size),
            self.adjust_bounds(after_info.bounds),
        )

    async def delete_feature(self, item: db_models.FeatureInput) -> None:
        """Remove a feature's count and size from the record.

        The bounds are left as they are. This never creates the record.

        Raises:
            MetadataNotFoundError: If the record does not exist.
        """
        info = self._info(item)
        await self.adjust_properties(count=-1, size=-info.size)
