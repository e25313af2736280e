"""
Error types for LinkStore.

This module defines all exception types raised by the engine:
- LinkStoreError: Base exception
- Schema faults: PrimaryKeyMissingError, CollectionNotRegisteredError,
  TriggerNotFoundError, LinkCycleError
- Storage faults: StorageOpenError, StoreError, StoreWriteError,
  StoreDeleteError
- Environment faults: StorageUnsupportedError
- Generation faults: InvalidTemplateError

Invariants:
    - All errors inherit from LinkStoreError
    - Every error carries a stable code for programmatic handling
    - Errors name the collection they were raised for
"""

from __future__ import annotations

from typing import Any


class LinkStoreError(Exception):
    """Base exception for all LinkStore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LINKSTORE_ERROR"
        self.details = details or {}


class PrimaryKeyMissingError(LinkStoreError):
    """An entity has no value for its collection's primary key.

    Raised when:
    - A top-level entity handed to persist/add/update lacks the key
    - The key is present but empty
    """

    def __init__(self, collection: str, primary_key: str) -> None:
        super().__init__(
            f"Entity in collection '{collection}' has no value for primary key '{primary_key}'",
            code="PRIMARY_KEY_MISSING",
            details={"collection": collection, "primary_key": primary_key},
        )
        self.collection = collection
        self.primary_key = primary_key


class CollectionNotRegisteredError(LinkStoreError):
    """No options were ever registered for the collection."""

    def __init__(self, collection: str) -> None:
        super().__init__(
            f"No options registered for collection '{collection}'",
            code="COLLECTION_NOT_REGISTERED",
            details={"collection": collection},
        )
        self.collection = collection


class TriggerNotFoundError(LinkStoreError):
    """A named trigger is not declared for the collection."""

    def __init__(self, collection: str, trigger: str) -> None:
        super().__init__(
            f"Trigger '{trigger}' is not declared for collection '{collection}'",
            code="TRIGGER_NOT_FOUND",
            details={"collection": collection, "trigger": trigger},
        )
        self.collection = collection
        self.trigger = trigger


class LinkCycleError(LinkStoreError):
    """The declared links form a cycle.

    Attributes:
        collection: Collection where the traversal started
        chain: Collections visited before the cycle was closed
    """

    def __init__(self, collection: str, chain: list[str]) -> None:
        super().__init__(
            f"Link cycle detected from '{collection}': {' -> '.join(chain)}",
            code="LINK_CYCLE",
            details={"collection": collection, "chain": list(chain)},
        )
        self.collection = collection
        self.chain = list(chain)


class StorageOpenError(LinkStoreError):
    """The storage engine could not be opened or upgraded."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_OPEN_ERROR",
            details={"path": path},
        )
        self.path = path


class StoreError(LinkStoreError):
    """A read or transaction failed for a collection."""

    def __init__(self, collection: str, message: str) -> None:
        super().__init__(
            f"Store '{collection}': {message}",
            code="STORE_ERROR",
            details={"collection": collection},
        )
        self.collection = collection


class StoreWriteError(LinkStoreError):
    """One or more rows could not be written into a collection.

    Rows written before and after a failing row in the same transaction
    are kept.

    Attributes:
        collection: Collection the rows were written to
        messages: One message per failed row
    """

    def __init__(self, collection: str, messages: list[str]) -> None:
        super().__init__(
            f"Failed to write {len(messages)} row(s) to '{collection}': " + "; ".join(messages),
            code="STORE_WRITE_ERROR",
            details={"collection": collection, "messages": list(messages)},
        )
        self.collection = collection
        self.messages = list(messages)


class StoreDeleteError(LinkStoreError):
    """A row could not be deleted."""

    def __init__(self, collection: str, key: Any, message: str) -> None:
        super().__init__(
            f"Failed to delete '{key}' from '{collection}': {message}",
            code="STORE_DELETE_ERROR",
            details={"collection": collection, "key": key},
        )
        self.collection = collection
        self.key = key


class StorageUnsupportedError(LinkStoreError):
    """The host environment cannot provide the storage engine.

    Raised when:
    - The SQLite library is too old for savepoints
    - The data directory cannot be created or written
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="STORAGE_UNSUPPORTED")


class InvalidTemplateError(LinkStoreError):
    """A value template cannot be generated.

    Raised when:
    - A template names a type no variant handles
    - A template carries fields its variant does not take
    """

    def __init__(self, message: str, template: Any = None) -> None:
        super().__init__(message, code="INVALID_TEMPLATE", details={"template": repr(template)})
