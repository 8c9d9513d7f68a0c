"""Geographic extent of GeoJSON features, geometries and collections."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import shapely.errors
from shapely import geometry as shapely_geometry

from featurestore.core import errors

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from shapely.geometry.base import BaseGeometry

    from featurestore.db import models as db_models


def geometry_shape(geometry: Mapping[str, Any] | None) -> BaseGeometry:
    """Parse a GeoJSON geometry into a non-empty shapely geometry.

    Args:
        geometry: GeoJSON geometry mapping.

    Returns:
        The parsed shapely geometry.

    Raises:
        EncodingError: If the geometry is missing, malformed or empty.
    """
    if not geometry:
        raise errors.EncodingError("Feature has no geometry")
    try:
        shape = shapely_geometry.shape(geometry)
    except (
        shapely.errors.ShapelyError,
        AttributeError,
        IndexError,
        KeyError,
        TypeError,
        ValueError,
    ) as error:
        raise errors.EncodingError(f"Malformed geometry: {error}") from error
    if shape.is_empty:
        raise errors.EncodingError("Feature geometry is empty")
    return shape


def _geometries(obj: Mapping[str, Any]) -> Iterator[Mapping[str, Any] | None]:
    match obj.get("type"):
        case "FeatureCollection":
            for feature in obj.get("features") or []:
                yield feature.get("geometry")
        case "Feature":
            yield obj.get("geometry")
        case _:
            yield obj


def feature_extent(obj: Mapping[str, Any]) -> db_models.BBox:
    """Return ``(west, south, east, north)`` enclosing a GeoJSON object.

    Accepts a Feature, a FeatureCollection (extent of all member features)
    or a bare geometry.

    Raises:
        EncodingError: If no usable geometry is found.
    """
    bounds = [geometry_shape(g).bounds for g in _geometries(obj)]
    if not bounds:
        raise errors.EncodingError("Collection has no features")
    return (
        min(b[0] for b in bounds),
        min(b[1] for b in bounds),
        max(b[2] for b in bounds),
        max(b[3] for b in bounds),
    )
