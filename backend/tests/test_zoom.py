"""Tests for the zoom range heuristic and tile math.

The expected ranges follow from the two thresholds of the heuristic: the
maximum zoom is the coarsest level at which an average tile stays under
1000 bytes, the minimum zoom is the first level, scanning down from z22,
at which an average tile exceeds 500 KiB.

See Also:
    - backend/featurestore/services/zoom.py for the implementation.
"""

from __future__ import annotations

from featurestore.db import models as db_models
from featurestore.services import zoom

BOX = (-1.0, -1.0, 1.0, 1.0)


def test_tile_count_whole_world_at_zoom_zero() -> None:
    """Test that one tile covers the world at z0."""
    grid = zoom.TileGrid()
    assert grid.tile_count((-180.0, -85.0, 180.0, 85.0), 0) == 1


def test_tile_count_box_around_origin() -> None:
    """Test the tile count of a box straddling the origin."""
    grid = zoom.TileGrid()
    assert grid.tile_count(BOX, 1) == 4
    assert grid.tile_count(BOX, 9) == 16
    assert grid.tile_count(BOX, 10) == 36


def test_tile_count_clamps_polar_latitudes() -> None:
    """Test that latitudes beyond the Mercator limit are clamped."""
    grid = zoom.TileGrid()
    assert grid.tile_count((-180.0, -90.0, 180.0, 90.0), 1) == 4


def test_bounding_quadkey_is_quadkey() -> None:
    """Test that the bounding cell is a quadkey string."""
    grid = zoom.TileGrid()
    quadkey = grid.bounding_quadkey((10.0, 10.0, 10.001, 10.001))
    assert quadkey
    assert set(quadkey) <= set("0123")


def test_zoom_range_large_dataset() -> None:
    """Test that a large dataset needs a high minimum zoom."""
    assert zoom.zoom_range(10_000_000, BOX) == db_models.ZoomRange(9, 15)


def test_zoom_range_small_dataset_starts_at_zero() -> None:
    """Test that data fitting one tile before 500 KiB starts at z0."""
    assert zoom.zoom_range(600_000, BOX) == db_models.ZoomRange(0, 13)


def test_zoom_range_tiny_point_dataset() -> None:
    """Test that a small point dataset is detailed at every zoom."""
    bounds = (10.0, 10.0, 10.0, 10.0)
    assert zoom.zoom_range(500, bounds) == db_models.ZoomRange(0, 22)


def test_zoom_range_default_maxzoom() -> None:
    """Test that maxzoom stays 14 when no scanned level qualifies."""
    bounds = (10.0, 10.0, 10.0, 10.0)
    assert zoom.zoom_range(2000, bounds) == db_models.ZoomRange(0, 14)


def test_zoom_range_empty_dataset() -> None:
    """Test that no data or an inverted box gives (0, 0)."""
    assert zoom.zoom_range(0, (0.0, 0.0, 0.0, 0.0)) == (0, 0)
    assert zoom.zoom_range(100, db_models.EMPTY_BOUNDS) == (0, 0)


def test_zoom_range_uses_given_grid() -> None:
    """Test that tile math is taken from the grid argument."""

    class OneTileGrid(zoom.TileGrid):
        def tile_count(self, bounds: db_models.BBox, zoom: int) -> int:
            return 1

    assert zoom.zoom_range(500, BOX) == (0, 0)
    assert zoom.zoom_range(500, BOX, OneTileGrid()) == (0, 22)


def test_prepare_fills_zoom_fields() -> None:
    """Test that prepare copies the record and fills in the zoom range."""
    record = db_models.DatasetMetadata(
        dataset="parks",
        id="metadata!parks",
        west=-1.0,
        south=-1.0,
        east=1.0,
        north=1.0,
        count=10,
        size=10_000_000,
    )
    prepared = zoom.prepare(record)
    assert (prepared.minzoom, prepared.maxzoom) == (9, 15)
    assert record.minzoom is None
