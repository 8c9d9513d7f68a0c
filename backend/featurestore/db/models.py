"""Data models for dataset metadata and feature records.

This module defines the core data structures shared by the metadata
aggregator, the batch coordinator and the stores. DatasetMetadata is the
per-dataset summary record; StoreRecord is a feature in its stored form; the
FeatureInput union tells the aggregator whether size and extent have to be
computed (RawFeature) or can be read off an already materialized record
(StoreRecord).

Example:
    Building the key of a dataset's metadata record:
        >>> from featurestore.db.models import metadata_key
        >>> metadata_key("parks")
        {'dataset': 'parks', 'id': 'metadata!parks'}

    Wrapping a GeoJSON feature for the aggregator:
        >>> from featurestore.db.models import RawFeature
        >>> item = RawFeature({
        ...     "type": "Feature",
        ...     "id": "a",
        ...     "geometry": {"type": "Point", "coordinates": [1.0, 2.0]},
        ...     "properties": {},
        ... })
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Literal, NamedTuple

BBox = tuple[float, float, float, float]
Feature = dict[str, Any]
FeatureCollection = dict[str, Any]
Key = dict[str, str]
ConditionOp = Literal["GT", "LT", "NULL", "NOT_NULL"]

FEATURE_PREFIX = "id!"
METADATA_PREFIX = "metadata!"

# Inverted box, widened by the first insert.
EMPTY_BOUNDS: BBox = (180.0, 90.0, -180.0, -90.0)


def now_millis() -> int:
    """Return the current time in milliseconds since the Unix epoch."""
    return int(datetime.datetime.now(tz=datetime.UTC).timestamp() * 1000)


def feature_key(dataset: str, feature_id: str) -> Key:
    """Return the store key of a feature record."""
    return {"dataset": dataset, "id": FEATURE_PREFIX + feature_id}


def metadata_key(dataset: str) -> Key:
    """Return the store key of a dataset's metadata record."""
    return {"dataset": dataset, "id": METADATA_PREFIX + dataset}


def feature_collection(features: list[Feature]) -> FeatureCollection:
    """Wrap features in a GeoJSON FeatureCollection."""
    return {"type": "FeatureCollection", "features": features}


class ZoomRange(NamedTuple):
    min: int
    max: int


class Condition(NamedTuple):
    """Precondition evaluated against the stored item of a conditional write.

    ``GT`` and ``LT`` hold when the stored attribute is greater/less than
    ``value``. ``NULL`` holds when the attribute is absent, ``NOT_NULL`` when
    it is present.
    """

    attribute: str
    op: ConditionOp
    value: Any = None


class BlobWrite(NamedTuple):
    """A spilled feature payload waiting to be written to the blob store."""

    key: str
    body: bytes


@dataclasses.dataclass(frozen=True)
class FeatureInfo:
    """Encoded size and geographic extent of a single feature."""

    size: int
    west: float
    south: float
    east: float
    north: float

    @property
    def bounds(self) -> BBox:
        return (self.west, self.south, self.east, self.north)


@dataclasses.dataclass(frozen=True)
class RawFeature:
    """A GeoJSON feature whose size and extent must be computed."""

    feature: Feature


@dataclasses.dataclass
class StoreRecord:
    """A feature in its stored form.

    Exactly one of ``val`` (inline payload) and ``s3url`` (location of the
    spilled payload) is set.

    Attributes:
        dataset: Dataset the feature belongs to (partition key).
        id: Sort key, the feature id prefixed with ``id!``.
        cell: Quadkey of the smallest tile containing the feature.
        size: Byte length of the encoded payload.
        west: Western edge of the feature's extent.
        south: Southern edge of the feature's extent.
        east: Eastern edge of the feature's extent.
        north: Northern edge of the feature's extent.
        val: Inline encoded payload.
        s3url: ``s3://`` URL of the spilled payload.
    """

    dataset: str
    id: str
    cell: str
    size: int
    west: float
    south: float
    east: float
    north: float
    val: bytes | None = None
    s3url: str | None = None

    @property
    def feature_id(self) -> str:
        return self.id.removeprefix(FEATURE_PREFIX)

    @property
    def info(self) -> FeatureInfo:
        return FeatureInfo(
            size=self.size,
            west=self.west,
            south=self.south,
            east=self.east,
            north=self.north,
        )

    def to_item(self) -> dict[str, Any]:
        """Convert to a store item, omitting the unset payload field."""
        item = dataclasses.asdict(self)
        return {k: v for k, v in item.items() if v is not None}

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> StoreRecord:
        return cls(
            dataset=str(item["dataset"]),
            id=str(item["id"]),
            cell=str(item.get("cell", "")),
            size=int(item["size"]),
            west=float(item["west"]),
            south=float(item["south"]),
            east=float(item["east"]),
            north=float(item["north"]),
            val=item.get("val"),
            s3url=item.get("s3url"),
        )


FeatureInput = RawFeature | StoreRecord


@dataclasses.dataclass
class DatasetMetadata:
    """Summary record describing every live feature in a dataset.

    The bounding box only ever widens: inserts stretch it, deletes leave it
    alone. ``minzoom`` and ``maxzoom`` are derived from ``size`` and the box
    when a record is prepared for a caller and are never stored.

    Attributes:
        dataset: Dataset name (partition key).
        id: Sentinel sort key, ``metadata!<dataset>``.
        west: Western edge of the union of all inserted extents.
        south: Southern edge of the union of all inserted extents.
        east: Eastern edge of the union of all inserted extents.
        north: Northern edge of the union of all inserted extents.
        count: Number of live feature records.
        size: Sum of the encoded sizes of live features, in bytes.
        updated: Time of the last mutation, in epoch milliseconds.
        minzoom: Derived recommended minimum zoom.
        maxzoom: Derived recommended maximum zoom.
    """

    dataset: str
    id: str
    west: float = EMPTY_BOUNDS[0]
    south: float = EMPTY_BOUNDS[1]
    east: float = EMPTY_BOUNDS[2]
    north: float = EMPTY_BOUNDS[3]
    count: int = 0
    size: int = 0
    updated: int = dataclasses.field(default_factory=now_millis)
    minzoom: int | None = None
    maxzoom: int | None = None

    @property
    def bounds(self) -> BBox:
        return (self.west, self.south, self.east, self.north)

    @classmethod
    def empty(cls, dataset: str) -> DatasetMetadata:
        return cls(dataset=dataset, id=METADATA_PREFIX + dataset)

    def to_item(self) -> dict[str, Any]:
        """Convert to a store item; derived zoom fields are not persisted."""
        item = dataclasses.asdict(self)
        del item["minzoom"]
        del item["maxzoom"]
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> DatasetMetadata:
        return cls(
            dataset=str(item["dataset"]),
            id=str(item["id"]),
            west=float(item["west"]),
            south=float(item["south"]),
            east=float(item["east"]),
            north=float(item["north"]),
            count=int(item["count"]),
            size=int(item["size"]),
            updated=int(item["updated"]),
        )
