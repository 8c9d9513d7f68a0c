"""Batch insert, update and removal of GeoJSON features.

A batch put encodes every feature, writes the payloads too large to keep
inline to the blob store, then writes all records with one bulk request. A
batch remove deletes all feature records with one bulk request. When the
store applies only part of a bulk request, the rejected items are translated
back into features (or ids) so the caller can retry exactly that subset.

Batches must fit the store's per-request limits; the coordinator does not
split them.

Example:
    Write a collection and retry whatever the store rejected:
        >>> coordinator = BatchWriteCoordinator(store, blobs, encoder)
        >>> try:
        ...     written = await coordinator.put(collection, "parks")
        ... except errors.PartialBatchError as error:
        ...     written = await coordinator.put(error.unprocessed, "parks")
"""

from __future__ import annotations

import functools
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from featurestore.core import errors
from featurestore.core.logging_config import get_logger
from featurestore.db import models as db_models
from featurestore.services import encoding
from featurestore.utils import concurrency

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from featurestore.db import blobs as db_blobs
    from featurestore.db import database

_LOGGER = get_logger(__name__)

DEFAULT_CONCURRENCY = 150


def _unprocessed_requests(
    error: errors.UnprocessedItemsError,
    request_type: str,
) -> list[dict[str, Any]]:
    return [
        request[request_type]
        for requests in error.unprocessed.values()
        for request in requests
    ]


class BatchWriteCoordinator:
    """Fans batches of feature writes out to the blob and key-value stores.

    Attributes:
        store: Key-value store holding feature records.
        blobs: Blob store receiving spilled payloads.
        encoder: Converts features into records and blob writes.
        concurrency: Maximum number of blob writes in flight.
    """

    def __init__(
        self,
        store: database.KeyValueStoreProtocol,
        blobs: db_blobs.BlobStoreProtocol,
        encoder: encoding.RecordEncoder,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.encoder = encoder
        self.concurrency = concurrency

    async def put(
        self,
        collection: db_models.FeatureCollection | Iterable[db_models.Feature],
        dataset: str,
    ) -> db_models.FeatureCollection:
        """Insert or update a set of GeoJSON features.

        Args:
            collection: FeatureCollection, or an iterable of features.
            dataset: Dataset the features belong to.

        Returns:
            FeatureCollection of the written features, decoded from their
            stored payloads, in input order.

        Raises:
            EncodingError: If any feature cannot be encoded. Nothing is
                written.
            PartialBatchError: If the store rejected some records; its
                ``unprocessed`` is a FeatureCollection of those features.
        """
        if isinstance(collection, Mapping):
            features = list(collection.get("features") or [])
        else:
            features = list(collection)

        records: list[db_models.StoreRecord] = []
        payloads: list[bytes] = []
        blob_writes: list[db_models.BlobWrite] = []
        for feature in features:
            record, blob = self.encoder.to_database_record(feature, dataset)
            records.append(record)
            if blob is not None:
                blob_writes.append(blob)
                payloads.append(blob.body)
            else:
                payloads.append(record.val or b"")

        if blob_writes:
            _LOGGER.debug(
                "blob_writes_scheduled",
                dataset=dataset,
                count=len(blob_writes),
            )
            await concurrency.gather_bounded(
                [
                    functools.partial(
                        self.blobs.put_object, blob.key, blob.body
                    )
                    for blob in blob_writes
                ],
                limit=self.concurrency,
            )

        try:
            await self.store.put_items([r.to_item() for r in records])
        except errors.UnprocessedItemsError as error:
            payload_by_id: dict[str, bytes] = {}
            for record, payload in zip(records, payloads):
                payload_by_id.setdefault(record.feature_id, payload)
            unprocessed = [
                encoding.decode_feature(
                    payload_by_id[encoding.id_from_record(request["Item"])]
                )
                for request in _unprocessed_requests(error, "PutRequest")
            ]
            _LOGGER.warning(
                "batch_put_partial",
                dataset=dataset,
                total=len(records),
                unprocessed=len(unprocessed),
            )
            raise errors.PartialBatchError(
                f"{len(unprocessed)} of {len(records)} features were not "
                "written",
                db_models.feature_collection(unprocessed),
            ) from error

        return db_models.feature_collection(
            [encoding.decode_feature(payload) for payload in payloads]
        )

    async def remove(self, ids: Sequence[str], dataset: str) -> None:
        """Remove a set of features.

        Args:
            ids: Ids of the features to remove.
            dataset: Dataset the features belong to.

        Raises:
            PartialBatchError: If the store rejected some deletes; its
                ``unprocessed`` is the list of those feature ids.
        """
        keys = [db_models.feature_key(dataset, fid) for fid in ids]
        try:
            await self.store.delete_items(keys)
        except errors.UnprocessedItemsError as error:
            unprocessed = [
                encoding.id_from_record(request["Key"])
                for request in _unprocessed_requests(error, "DeleteRequest")
            ]
            _LOGGER.warning(
                "batch_remove_partial",
                dataset=dataset,
                total=len(keys),
                unprocessed=len(unprocessed),
            )
            raise errors.PartialBatchError(
                f"{len(unprocessed)} of {len(keys)} features were not "
                "removed",
                unprocessed,
            ) from error
