"""Binary feature payloads and feature store records.

A payload is a 4-byte big-endian header length, a compact JSON header with
the feature's ``id`` and ``properties``, then the geometry as WKB. The
payload's byte length is the feature's ``size`` everywhere in the system.

RecordEncoder turns a GeoJSON feature into the record stored in the
key-value store. Payloads under ``max_inline_bytes`` travel inline in the
record's ``val``; larger ones are spilled to the blob store and the record
carries their ``s3url`` instead.

Example:
    Encode a feature for the "parks" dataset:
        >>> encoder = RecordEncoder(bucket="blobs", prefix="features")
        >>> record, blob = encoder.to_database_record(feature, "parks")
        >>> record.id
        'id!a'
        >>> blob is None  # small enough to stay inline
        True
"""

from __future__ import annotations

import json
import struct
import uuid
from typing import TYPE_CHECKING, Any

import shapely

from featurestore.core import errors
from featurestore.db import models as db_models
from featurestore.services import extent, zoom

if TYPE_CHECKING:
    from collections.abc import Mapping

    from featurestore.core import config

_HEADER_LENGTH = struct.Struct(">I")


def _require_feature(feature: Mapping[str, Any]) -> None:
    if not isinstance(feature, dict) or feature.get("type") != "Feature":
        raise errors.EncodingError("Expected a GeoJSON Feature")


def encode_feature(feature: Mapping[str, Any]) -> bytes:
    """Encode a GeoJSON feature into its binary payload.

    Raises:
        EncodingError: If the input is not a Feature with a valid geometry.
    """
    _require_feature(feature)
    geometry = extent.geometry_shape(feature.get("geometry"))
    header = json.dumps(
        {
            "id": feature.get("id"),
            "properties": feature.get("properties"),
        },
        separators=(",", ":"),
    ).encode("utf-8")
    return _HEADER_LENGTH.pack(len(header)) + header + shapely.to_wkb(geometry)


def decode_feature(payload: bytes) -> db_models.Feature:
    """Decode a binary payload back into a GeoJSON feature."""
    (length,) = _HEADER_LENGTH.unpack_from(payload)
    start = _HEADER_LENGTH.size
    header = json.loads(payload[start : start + length])
    geometry = shapely.from_wkb(payload[start + length :])
    feature: db_models.Feature = {"type": "Feature"}
    if header["id"] is not None:
        feature["id"] = header["id"]
    feature["geometry"] = json.loads(shapely.to_geojson(geometry))
    feature["properties"] = header["properties"]
    return feature


def encoded_size(feature: Mapping[str, Any]) -> int:
    """Return the byte length of a feature's payload."""
    return len(encode_feature(feature))


def id_from_record(item: Mapping[str, Any]) -> str:
    """Return the bare feature id of a record or record key."""
    return str(item["id"]).removeprefix(db_models.FEATURE_PREFIX)


class RecordEncoder:
    """Converts GeoJSON features into store records and spilled blobs.

    Attributes:
        bucket: Bucket that spilled payloads are written to.
        prefix: Key prefix for spilled payloads.
        max_inline_bytes: Payloads this large or larger are spilled.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str,
        max_inline_bytes: int = 10 * 1024,
        grid: zoom.TileGrid = zoom.DEFAULT_GRID,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.max_inline_bytes = max_inline_bytes
        self.grid = grid

    @classmethod
    def from_settings(cls, settings: config.Settings) -> RecordEncoder:
        return cls(
            bucket=settings.bucket,
            prefix=settings.prefix,
            max_inline_bytes=settings.max_inline_bytes,
        )

    def to_database_record(
        self,
        feature: Mapping[str, Any],
        dataset: str,
    ) -> tuple[db_models.StoreRecord, db_models.BlobWrite | None]:
        """Encode a feature into a store record and an optional blob write.

        Features without an ``id`` are assigned a random one.

        Args:
            feature: GeoJSON feature.
            dataset: Dataset the feature belongs to.

        Returns:
            The record, plus the blob write when the payload was spilled.

        Raises:
            EncodingError: If the feature cannot be encoded.
        """
        _require_feature(feature)
        if feature.get("id") is None:
            feature = {**feature, "id": uuid.uuid4().hex}
        feature_id = str(feature["id"])

        payload = encode_feature(feature)
        west, south, east, north = extent.feature_extent(feature)
        record = db_models.StoreRecord(
            dataset=dataset,
            id=db_models.FEATURE_PREFIX + feature_id,
            cell=self.grid.bounding_quadkey((west, south, east, north)),
            size=len(payload),
            west=west,
            south=south,
            east=east,
            north=north,
        )
        if len(payload) < self.max_inline_bytes:
            record.val = payload
            return record, None

        key = f"{self.prefix}/{dataset}/{feature_id}/{uuid.uuid4().hex}"
        record.s3url = f"s3://{self.bucket}/{key}"
        return record, db_models.BlobWrite(key=key, body=payload)
