"""Key-value store protocol and implementations for feature records.

Feature records and dataset metadata records share one table, partitioned by
``dataset`` and sorted by ``id``. The store offers point reads and writes,
conditional updates with per-field comparisons and additive deltas, prefix
queries over a dataset, and bulk put/delete that report the items they could
not apply.

Two backends implement the protocol: an in-memory store for tests and local
development, and a DynamoDB store for production.
"""

from __future__ import annotations

import asyncio
import copy
import decimal
from typing import TYPE_CHECKING, Any, Protocol

from boto3.dynamodb import conditions
from boto3.dynamodb import types as dynamo_types
from botocore import exceptions as botocore_exceptions

from featurestore.core import errors
from featurestore.db import aws

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping

    from featurestore.core import config
    from featurestore.db import models as db_models


class KeyValueStoreProtocol(Protocol):
    """Protocol interface for the table holding feature and metadata records.

    Every method is a coroutine (``query`` returns an async iterator) so
    callers can run store calls concurrently from one event loop.
    """

    async def get_item(
        self, key: db_models.Key
    ) -> dict[str, Any] | None: ...

    async def put_item(self, item: Mapping[str, Any]) -> None: ...

    async def update_item(
        self,
        key: db_models.Key,
        *,
        put: Mapping[str, Any] | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: db_models.Condition | None = None,
    ) -> None: ...

    def query(
        self, dataset: str, prefix: str
    ) -> AsyncIterator[dict[str, Any]]: ...

    async def put_items(self, items: Iterable[Mapping[str, Any]]) -> None: ...

    async def delete_items(self, keys: Iterable[db_models.Key]) -> None: ...


def _condition_holds(
    condition: db_models.Condition,
    item: Mapping[str, Any] | None,
) -> bool:
    """Evaluate a condition against an item the way DynamoDB does."""
    present = item is not None and condition.attribute in item
    match condition.op:
        case "NULL":
            return not present
        case "NOT_NULL":
            return present
        case "GT":
            return present and item[condition.attribute] > condition.value
        case "LT":
            return present and item[condition.attribute] < condition.value
    raise ValueError(f"Unsupported condition operator {condition.op!r}")


class InMemoryKeyValueStore(KeyValueStoreProtocol):
    """Simple in-memory store for tests and local development.

    Items live in a dictionary keyed by ``(dataset, id)`` and are lost when
    the process exits. Each operation yields to the event loop once before
    touching the data, then completes without further suspension, so every
    single call is atomic the way a conditional write is on the real store.

    Sort keys listed in ``unprocessed_keys`` are rejected by ``put_items``
    and ``delete_items`` and reported back as unprocessed.
    """

    def __init__(self, table: str = "features") -> None:
        """Initialize an empty in-memory store.

        Args:
            table: Table name reported in unprocessed-item errors.
        """
        self.table = table
        self.unprocessed_keys: set[str] = set()
        self._items: dict[tuple[str, str], dict[str, Any]] = {}

    @staticmethod
    def _index(key: Mapping[str, Any]) -> tuple[str, str]:
        return (str(key["dataset"]), str(key["id"]))

    async def get_item(self, key: db_models.Key) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        item = self._items.get(self._index(key))
        return copy.deepcopy(item) if item is not None else None

    async def put_item(self, item: Mapping[str, Any]) -> None:
        await asyncio.sleep(0)
        self._items[self._index(item)] = copy.deepcopy(dict(item))

    async def update_item(
        self,
        key: db_models.Key,
        *,
        put: Mapping[str, Any] | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: db_models.Condition | None = None,
    ) -> None:
        """Apply a conditional SET/ADD update, creating the item if needed.

        Raises:
            ConditionFailedError: If ``condition`` does not hold.
        """
        await asyncio.sleep(0)
        index = self._index(key)
        item = self._items.get(index)
        if condition is not None and not _condition_holds(condition, item):
            raise errors.ConditionFailedError(item_exists=item is not None)

        if item is None:
            item = self._items[index] = dict(key)
        item.update(put or {})
        for attribute, delta in (add or {}).items():
            item[attribute] = item.get(attribute, 0) + delta

    async def query(
        self, dataset: str, prefix: str
    ) -> AsyncIterator[dict[str, Any]]:
        matches = [
            item
            for (item_dataset, sort_key), item in sorted(self._items.items())
            if item_dataset == dataset and sort_key.startswith(prefix)
        ]
        for item in matches:
            await asyncio.sleep(0)
            yield copy.deepcopy(item)

    async def put_items(self, items: Iterable[Mapping[str, Any]]) -> None:
        """Store every item except those whose sort key is rejected.

        Raises:
            UnprocessedItemsError: If any item was rejected.
        """
        await asyncio.sleep(0)
        rejected: list[dict[str, Any]] = []
        for item in items:
            if item["id"] in self.unprocessed_keys:
                rejected.append({"PutRequest": {"Item": copy.deepcopy(item)}})
            else:
                self._items[self._index(item)] = copy.deepcopy(dict(item))
        if rejected:
            raise errors.UnprocessedItemsError({self.table: rejected})

    async def delete_items(self, keys: Iterable[db_models.Key]) -> None:
        """Delete every key except those whose sort key is rejected.

        Raises:
            UnprocessedItemsError: If any delete was rejected.
        """
        await asyncio.sleep(0)
        rejected: list[dict[str, Any]] = []
        for key in keys:
            if key["id"] in self.unprocessed_keys:
                rejected.append({"DeleteRequest": {"Key": dict(key)}})
            else:
                self._items.pop(self._index(key), None)
        if rejected:
            raise errors.UnprocessedItemsError({self.table: rejected})


def _to_dynamo(value: Any) -> Any:
    """Convert floats to Decimal, recursively, for the boto3 resource API."""
    if isinstance(value, float):
        return decimal.Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    """Convert Decimal and Binary values back to plain Python types."""
    if isinstance(value, decimal.Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, dynamo_types.Binary):
        return bytes(value.value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def _condition_expression(
    condition: db_models.Condition,
    names: dict[str, str],
    values: dict[str, Any],
) -> str:
    """Render a condition and register its placeholders."""
    names["#c"] = condition.attribute
    match condition.op:
        case "NULL":
            return "attribute_not_exists(#c)"
        case "NOT_NULL":
            return "attribute_exists(#c)"
        case "GT":
            values[":c"] = _to_dynamo(condition.value)
            return "#c > :c"
        case "LT":
            values[":c"] = _to_dynamo(condition.value)
            return "#c < :c"
    raise ValueError(f"Unsupported condition operator {condition.op!r}")


def build_update_kwargs(
    key: db_models.Key,
    put: Mapping[str, Any] | None,
    add: Mapping[str, int | float] | None,
    condition: db_models.Condition | None,
) -> dict[str, Any]:
    """Build UpdateItem arguments for a SET/ADD update with a condition.

    Args:
        key: Primary key of the item.
        put: Attributes to overwrite.
        add: Numeric attributes to increment (negative values decrement).
        condition: Optional precondition on the stored item.

    Returns:
        Keyword arguments for ``Table.update_item``.
    """
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    sets: list[str] = []
    adds: list[str] = []
    for i, (attribute, value) in enumerate((put or {}).items()):
        names[f"#p{i}"] = attribute
        values[f":p{i}"] = _to_dynamo(value)
        sets.append(f"#p{i} = :p{i}")
    for i, (attribute, delta) in enumerate((add or {}).items()):
        names[f"#a{i}"] = attribute
        values[f":a{i}"] = _to_dynamo(delta)
        adds.append(f"#a{i} :a{i}")

    clauses = []
    if sets:
        clauses.append("SET " + ", ".join(sets))
    if adds:
        clauses.append("ADD " + ", ".join(adds))

    kwargs: dict[str, Any] = {
        "Key": key,
        "UpdateExpression": " ".join(clauses),
    }
    if condition is not None:
        kwargs["ConditionExpression"] = _condition_expression(
            condition, names, values
        )
        kwargs["ReturnValuesOnConditionCheckFailure"] = "ALL_OLD"
    kwargs["ExpressionAttributeNames"] = names
    if values:
        kwargs["ExpressionAttributeValues"] = values
    return kwargs


class DynamoKeyValueStore(KeyValueStoreProtocol):
    """DynamoDB-backed store for feature and metadata records.

    Uses the boto3 resource API. Blocking calls run in worker threads so the
    event loop keeps serving other coroutines. Bulk writes are split into
    ``batch_write_item`` requests of at most 25 items and the unprocessed
    items of every request are merged into one error.
    """

    BATCH_SIZE = 25

    def __init__(self, settings: config.Settings) -> None:
        """Initialize the store with AWS settings.

        Args:
            settings: Application settings naming the table and AWS options.
        """
        self.settings = settings
        self._resource = aws.create_session(settings).resource(
            "dynamodb",
            endpoint_url=settings.endpoint_url,
            config=aws.client_config(settings),
        )
        self._table = self._resource.Table(settings.table)

    async def get_item(self, key: db_models.Key) -> dict[str, Any] | None:
        response = await asyncio.to_thread(
            self._table.get_item, Key=key, ConsistentRead=True
        )
        item = response.get("Item")
        return _from_dynamo(item) if item is not None else None

    async def put_item(self, item: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._table.put_item, Item=_to_dynamo(item))

    async def update_item(
        self,
        key: db_models.Key,
        *,
        put: Mapping[str, Any] | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: db_models.Condition | None = None,
    ) -> None:
        """Run a conditional UpdateItem.

        Raises:
            ConditionFailedError: If the condition check failed. The old item
                returned with the failure tells whether the item exists.
        """
        kwargs = build_update_kwargs(key, put, add, condition)
        try:
            await asyncio.to_thread(self._table.update_item, **kwargs)
        except botocore_exceptions.ClientError as error:
            code = error.response.get("Error", {}).get("Code", "")
            if code != "ConditionalCheckFailedException":
                raise
            raise errors.ConditionFailedError(
                item_exists="Item" in error.response
            ) from error

    async def query(
        self, dataset: str, prefix: str
    ) -> AsyncIterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": conditions.Key("dataset").eq(dataset)
            & conditions.Key("id").begins_with(prefix),
        }
        while True:
            page = await asyncio.to_thread(self._table.query, **kwargs)
            for item in page.get("Items", []):
                yield _from_dynamo(item)
            last_key = page.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    async def put_items(self, items: Iterable[Mapping[str, Any]]) -> None:
        await self._batch_write(
            [{"PutRequest": {"Item": _to_dynamo(item)}} for item in items]
        )

    async def delete_items(self, keys: Iterable[db_models.Key]) -> None:
        await self._batch_write(
            [{"DeleteRequest": {"Key": dict(key)}} for key in keys]
        )

    async def _batch_write(self, requests: list[dict[str, Any]]) -> None:
        """Send write requests in chunks and collect unprocessed items.

        Raises:
            UnprocessedItemsError: If any chunk left items unprocessed.
        """
        table = self.settings.table
        unprocessed: list[dict[str, Any]] = []
        for start in range(0, len(requests), self.BATCH_SIZE):
            chunk = requests[start : start + self.BATCH_SIZE]
            response = await asyncio.to_thread(
                self._resource.batch_write_item,
                RequestItems={table: chunk},
            )
            unprocessed.extend(
                response.get("UnprocessedItems", {}).get(table, [])
            )
        if unprocessed:
            raise errors.UnprocessedItemsError(
                {table: [_from_dynamo(request) for request in unprocessed]}
            )


def get_key_value_store(settings: config.Settings) -> KeyValueStoreProtocol:
    """Factory function to create a key-value store.

    Args:
        settings: Application settings for the DynamoDB table.

    Returns:
        DynamoKeyValueStore instance for production use.
    """
    return DynamoKeyValueStore(settings)
