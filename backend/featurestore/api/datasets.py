"""Dataset metadata and batch feature write API endpoints.

This module exposes the metadata aggregator and the batch write coordinator
over HTTP. Metadata responses carry the derived ``minzoom``/``maxzoom``
range. Batch writes answer 409 with the rejected subset when the store only
applied part of a batch, so clients can retry exactly those items.

Example:
    Read a dataset's summary:
        >>> response = client.get("/api/datasets/parks/info")
        >>> response.json()
        >>> # Returns: {"dataset": "parks", "count": 12, "size": 4096,
        >>> #           "west": -1.0, ..., "minzoom": 0, "maxzoom": 14}

    Write a FeatureCollection:
        >>> response = client.put(
        ...     "/api/datasets/parks/features",
        ...     json={"type": "FeatureCollection", "features": [...]},
        ... )
"""

import dataclasses
from typing import Any

import fastapi
from fastapi import responses

from featurestore.core import config, errors
from featurestore.db import blobs as db_blobs
from featurestore.db import database
from featurestore.db import models as db_models
from featurestore.services import batch, encoding, metadata

router = fastapi.APIRouter(prefix="/api/datasets", tags=["datasets"])


def _get_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.KeyValueStoreProtocol:
    """Resolve the key-value store dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        KeyValueStoreProtocol implementation
            (DynamoKeyValueStore in production).
    """
    return database.get_key_value_store(settings)


def _get_coordinator(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    store: database.KeyValueStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> batch.BatchWriteCoordinator:
    """Resolve the batch write coordinator dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).
        store: Key-value store (injected via FastAPI Depends).

    Returns:
        Coordinator writing to the configured table and bucket.
    """
    return batch.BatchWriteCoordinator(
        store,
        db_blobs.get_blob_store(settings),
        encoding.RecordEncoder.from_settings(settings),
        concurrency=settings.blob_concurrency,
    )


def _serialize(info: db_models.DatasetMetadata | None) -> dict[str, Any]:
    return dataclasses.asdict(info) if info is not None else {}


@router.get("/{dataset}/info")
async def get_dataset_info(
    dataset: str,
    store: database.KeyValueStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Get the metadata record of a dataset.

    Args:
        dataset: Dataset name.
        store: Key-value store (injected via FastAPI Depends).

    Returns:
        The metadata record with its zoom range, or an empty object when
        the dataset has no record yet.
    """
    info = await metadata.MetadataAggregator(store, dataset).get_info()
    return _serialize(info)


@router.post("/{dataset}/info/calculate")
async def calculate_dataset_info(
    dataset: str,
    store: database.KeyValueStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Rebuild a dataset's metadata record from a full scan.

    Intended for maintenance: the rebuilt record replaces the stored one
    unconditionally, so no other writer should be active on the dataset.

    Args:
        dataset: Dataset name.
        store: Key-value store (injected via FastAPI Depends).

    Returns:
        The rebuilt metadata record with its zoom range.
    """
    info = await metadata.MetadataAggregator(store, dataset).calculate_info()
    return _serialize(info)


@router.put("/{dataset}/features")
async def put_features(
    dataset: str,
    collection: dict[str, Any] = fastapi.Body(...),  # noqa: B008
    coordinator: batch.BatchWriteCoordinator = fastapi.Depends(  # noqa: B008
        _get_coordinator
    ),
) -> dict[str, Any]:
    """Insert or update the features of a FeatureCollection.

    Args:
        dataset: Dataset name.
        collection: GeoJSON FeatureCollection.
        coordinator: Batch coordinator (injected via FastAPI Depends).

    Returns:
        FeatureCollection of the written features.

    Raises:
        HTTPException: 422 if a feature cannot be encoded, 409 with the
            unprocessed FeatureCollection if the store rejected some.
    """
    try:
        return await coordinator.put(collection, dataset)
    except errors.EncodingError as error:
        raise fastapi.HTTPException(
            status_code=422,
            detail=str(error),
        ) from error
    except errors.PartialBatchError as error:
        raise fastapi.HTTPException(
            status_code=409,
            detail={"message": str(error), "unprocessed": error.unprocessed},
        ) from error


@router.delete("/{dataset}/features", status_code=204)
async def remove_features(
    dataset: str,
    ids: list[str] = fastapi.Body(...),  # noqa: B008
    coordinator: batch.BatchWriteCoordinator = fastapi.Depends(  # noqa: B008
        _get_coordinator
    ),
) -> responses.Response:
    """Remove features by id.

    Args:
        dataset: Dataset name.
        ids: Ids of the features to remove.
        coordinator: Batch coordinator (injected via FastAPI Depends).

    Returns:
        Empty 204 response.

    Raises:
        HTTPException: 409 with the unprocessed ids if the store rejected
            some deletes.
    """
    try:
        await coordinator.remove(ids, dataset)
    except errors.PartialBatchError as error:
        raise fastapi.HTTPException(
            status_code=409,
            detail={"message": str(error), "unprocessed": error.unprocessed},
        ) from error
    return responses.Response(status_code=204)
