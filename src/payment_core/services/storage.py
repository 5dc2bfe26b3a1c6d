"""Keyed blob storage backing the transaction ledger.

A store maps string keys to string values. Writes that exceed the backend's
capacity raise ``StorageQuotaExceededError`` so callers can shrink the value
and retry.
"""

import logging
from typing import Any, Protocol

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage backend operation fails."""


class StorageQuotaExceededError(StorageError):
    """Raised when a value does not fit in the backend."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """Process-local store with an optional total size quota in bytes."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(
                len(v.encode("utf-8")) for k, v in self._data.items() if k != key
            )
            if used + len(value.encode("utf-8")) > self.quota_bytes:
                raise StorageQuotaExceededError(
                    f"Storage quota of {self.quota_bytes} bytes exceeded writing {key}"
                )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class DynamoDBStore:
    """Store backed by a DynamoDB table with a string partition key ``pk``.

    Each key is a single item ``{"pk": key, "value": value}``; DynamoDB's
    400 KB item limit surfaces as StorageQuotaExceededError.
    """

    def __init__(self, table_name: str, resource: Any = None) -> None:
        self.table_name = table_name
        self._dynamodb = resource or boto3.resource("dynamodb")
        self._table = self._dynamodb.Table(table_name)

    def get(self, key: str) -> str | None:
        try:
            response = self._table.get_item(Key={"pk": key})
        except ClientError as e:
            raise StorageError(f"Failed to read {key} from {self.table_name}: {e}") from e
        item: dict[str, Any] | None = response.get("Item")
        if item is None:
            return None
        return str(item.get("value", ""))

    def set(self, key: str, value: str) -> None:
        try:
            self._table.put_item(Item={"pk": key, "value": value})
        except ClientError as e:
            error = e.response.get("Error", {})
            if error.get("Code") == "ValidationException" and "size" in error.get(
                "Message", ""
            ).lower():
                raise StorageQuotaExceededError(
                    f"Item {key} exceeds the DynamoDB item size limit"
                ) from e
            raise StorageError(f"Failed to write {key} to {self.table_name}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._table.delete_item(Key={"pk": key})
        except ClientError as e:
            raise StorageError(f"Failed to delete {key} from {self.table_name}: {e}") from e
