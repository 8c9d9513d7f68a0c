"""Zoom range heuristic for map-rendering pipelines.

The recommended zoom range of a dataset is derived from its total encoded
size and its bounding box, assuming the data is spread evenly over the box:

- max = coarsest zoom at which an average tile holds under 1000 bytes,
  scanning from z22 down (14 when no scanned level qualifies),
- min = first zoom, scanning down, at which an average tile holds more than
  500 KiB, or 0 when the whole dataset fits one tile first.

Example:
    >>> from featurestore.services.zoom import zoom_range
    >>> zoom_range(10_000_000, (-1.0, -1.0, 1.0, 1.0))
    ZoomRange(min=9, max=15)
"""

from __future__ import annotations

import dataclasses

import mercantile

from featurestore.db import models as db_models

MAX_ZOOM = 22
DEFAULT_MAXZOOM = 14
DETAIL_TILE_BYTES = 1000
MAX_TILE_BYTES = 500 * 1024
MAX_LATITUDE = 85.0511287798066


class TileGrid:
    """Stateless Web Mercator tile math.

    One instance can be shared freely; it holds no state and is passed into
    ``zoom_range`` rather than living as a module global.
    """

    def tile_count(self, bounds: db_models.BBox, zoom: int) -> int:
        """Count the tiles at ``zoom`` covering a lon/lat bounding box.

        Latitudes are clamped to the Web Mercator limit.
        """
        west, south, east, north = bounds
        south = max(-MAX_LATITUDE, min(MAX_LATITUDE, south))
        north = max(-MAX_LATITUDE, min(MAX_LATITUDE, north))
        upper_left = mercantile.tile(west, north, zoom)
        lower_right = mercantile.tile(east, south, zoom)
        columns = lower_right.x - upper_left.x + 1
        rows = lower_right.y - upper_left.y + 1
        return max(columns, 1) * max(rows, 1)

    def bounding_quadkey(self, bounds: db_models.BBox) -> str:
        """Return the quadkey of the smallest tile containing ``bounds``."""
        tile = mercantile.bounding_tile(*bounds, truncate=True)
        return mercantile.quadkey(tile)


DEFAULT_GRID = TileGrid()


def zoom_range(
    size: int,
    bounds: db_models.BBox,
    grid: TileGrid = DEFAULT_GRID,
) -> db_models.ZoomRange:
    """Calculate an ideal zoom range from data size and geographic extent.

    A dataset without data (``size <= 0``) or with an inverted bounding box,
    such as the default box of an empty metadata record, gets
    ``ZoomRange(0, 0)``.

    Args:
        size: Total encoded size of the dataset in bytes.
        bounds: Extent as ``(west, south, east, north)`` in degrees.
        grid: Tile math helper.

    Returns:
        Recommended ``(min, max)`` zoom levels.
    """
    west, south, east, north = bounds
    if size <= 0 or west > east or south > north:
        return db_models.ZoomRange(0, 0)

    maxzoom = DEFAULT_MAXZOOM
    for zoom in range(MAX_ZOOM, -1, -1):
        tiles = grid.tile_count(bounds, zoom)
        avg_tile_size = size / tiles

        # ~1000 bytes per tile is usually all the detail needed
        if avg_tile_size < DETAIL_TILE_BYTES:
            maxzoom = zoom

        if avg_tile_size > MAX_TILE_BYTES:
            return db_models.ZoomRange(zoom, maxzoom)

        # Everything fits one tile from here down to z0
        if tiles == 1:
            break

    return db_models.ZoomRange(0, maxzoom)


def prepare(
    record: db_models.DatasetMetadata,
    grid: TileGrid = DEFAULT_GRID,
) -> db_models.DatasetMetadata:
    """Return a copy of a metadata record with its zoom range filled in."""
    minzoom, maxzoom = zoom_range(record.size, record.bounds, grid)
    return dataclasses.replace(record, minzoom=minzoom, maxzoom=maxzoom)
