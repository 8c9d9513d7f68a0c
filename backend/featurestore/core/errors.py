"""Exception hierarchy for feature storage and metadata maintenance.

Stores raise ConditionFailedError and UnprocessedItemsError in the shape the
backing service reports them. The metadata aggregator and batch coordinator
translate those into MetadataNotFoundError and PartialBatchError, which carry
domain-level context for the caller. Any other store or blob client error is
propagated unchanged.
"""

from __future__ import annotations

from typing import Any


class FeatureStoreError(Exception):
    """Base exception for all featurestore failures."""


class EncodingError(FeatureStoreError):
    """Raised when a feature cannot be encoded or measured."""


class ConditionFailedError(FeatureStoreError):
    """Raised when a conditional write's precondition does not hold.

    Attributes:
        item_exists: Whether an item was stored at the key when the condition
            was evaluated. Lets callers tell "value not more extreme" apart
            from "record missing".
    """

    def __init__(self, item_exists: bool) -> None:
        super().__init__(
            "Conditional check failed"
            + ("" if item_exists else " (item does not exist)")
        )
        self.item_exists = item_exists


class MetadataNotFoundError(FeatureStoreError):
    """Raised when a metadata adjustment targets a record that is absent."""

    def __init__(self, dataset: str) -> None:
        super().__init__(f"No metadata record for dataset {dataset!r}")
        self.dataset = dataset


class UnprocessedItemsError(FeatureStoreError):
    """Raised by a store when a bulk write leaves items unapplied.

    Attributes:
        unprocessed: Per-table request items the store did not apply, e.g.
            ``{"features": [{"PutRequest": {"Item": {...}}}]}``.
    """

    def __init__(self, unprocessed: dict[str, list[dict[str, Any]]]) -> None:
        count = sum(len(items) for items in unprocessed.values())
        super().__init__(f"{count} items were not processed")
        self.unprocessed = unprocessed


class PartialBatchError(FeatureStoreError):
    """Raised by the batch coordinator when part of a batch was rejected.

    Attributes:
        unprocessed: The rejected subset in domain terms. A GeoJSON
            FeatureCollection for puts, a list of feature ids for removes.
    """

    def __init__(self, message: str, unprocessed: Any) -> None:
        super().__init__(message)
        self.unprocessed = unprocessed
