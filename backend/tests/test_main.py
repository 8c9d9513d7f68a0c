"""Tests for FastAPI application factory and health endpoint.

This module verifies the application factory in featurestore.main:
- The FastAPI app is constructed with the expected title and version.
- The /health endpoint is available and returns {"status": "ok"}.
- The dataset routes are registered.

All tests are isolated and do not touch AWS.
"""

from __future__ import annotations

from fastapi import testclient

from featurestore import main


def test_create_app() -> None:
    """Test that create_app returns a FastAPI instance."""
    app = main.create_app()
    assert app.title == "Feature Store"
    assert app.version == "0.1.0"


def test_health_endpoint() -> None:
    """Test health check endpoint."""
    client = testclient.TestClient(main.create_app())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_dataset_routes_registered() -> None:
    """Test that the dataset endpoints are mounted."""
    app = main.create_app()
    paths = {route.path for route in app.routes}  # type: ignore[attr-defined]
    assert "/api/datasets/{dataset}/info" in paths
    assert "/api/datasets/{dataset}/info/calculate" in paths
    assert "/api/datasets/{dataset}/features" in paths
