"""API router subpackage for the feature store service.

Submodules:
    - datasets: Endpoints for dataset metadata and batch feature writes.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
